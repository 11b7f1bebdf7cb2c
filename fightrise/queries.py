"""GraphQL documents sent to the start.gg API."""

tournament_query = """
query TournamentEvents($slug: String!) {
  tournament(slug: $slug) {
    id
    name
    slug
    state
    events {
      id
      name
      numEntrants
      state
    }
  }
}
"""

event_sets_query = """
query EventSets($eventId: ID!, $page: Int!, $perPage: Int!) {
  event(id: $eventId) {
    id
    sets(page: $page, perPage: $perPage, sortType: STANDARD) {
      pageInfo {
        total
        totalPages
      }
      nodes {
        id
        state
        fullRoundText
        identifier
        round
        slots {
          entrant {
            id
            name
          }
          standing {
            stats {
              score {
                value
              }
            }
          }
        }
      }
    }
  }
}
"""

event_entrants_query = """
query EventEntrants($eventId: ID!, $page: Int!, $perPage: Int!) {
  event(id: $eventId) {
    id
    entrants(query: {page: $page, perPage: $perPage}) {
      pageInfo {
        total
        totalPages
      }
      nodes {
        id
        name
      }
    }
  }
}
"""

report_set_mutation = """
mutation ReportSet($setId: ID!, $winnerId: ID!) {
  reportBracketSet(setId: $setId, winnerId: $winnerId) {
    id
    state
  }
}
"""
