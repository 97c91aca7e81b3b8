"""
NerdGraph documents used by the client.
"""

NRQL_QUERY = """
query NrqlQuery($accountId: Int!, $nrqlQuery: Nrql!) {
  actor {
    account(id: $accountId) {
      nrql(query: $nrqlQuery) {
        results
        metadata {
          eventTypes
          facets
          messages
          timeWindow { begin end }
        }
      }
    }
  }
}
"""

CURRENT_USER_QUERY = """
query CurrentUser {
  actor {
    user { id name email }
  }
}
"""

# entitySearch does not accept its query string as a variable reliably, so the
# account filter is interpolated after int() validation.
DASHBOARD_SEARCH_QUERY = """
query DashboardSearch {
  actor {
    entitySearch(query: "accountId = %d AND type = 'DASHBOARD'") {
      results {
        entities {
          guid
          name
          ... on DashboardEntityOutline {
            accountId
            createdAt
            updatedAt
          }
        }
      }
    }
  }
}
"""

DASHBOARD_QUERY = """
query Dashboard($guid: EntityGuid!) {
  actor {
    entity(guid: $guid) {
      guid
      name
      ... on DashboardEntity {
        accountId
        description
        permissions
        createdAt
        updatedAt
        pages {
          name
          description
          widgets {
            title
            layout { row column width height }
            rawConfiguration
            visualization { id }
          }
        }
      }
    }
  }
}
"""

DASHBOARD_CREATE_MUTATION = """
mutation DashboardCreate($accountId: Int!, $dashboard: DashboardInput!) {
  dashboardCreate(accountId: $accountId, dashboard: $dashboard) {
    entityResult { guid name }
    errors { description type }
  }
}
"""

DASHBOARD_UPDATE_MUTATION = """
mutation DashboardUpdate($guid: EntityGuid!, $dashboard: DashboardInput!) {
  dashboardUpdate(guid: $guid, dashboard: $dashboard) {
    entityResult { guid name }
    errors { description type }
  }
}
"""

DASHBOARD_DELETE_MUTATION = """
mutation DashboardDelete($guid: EntityGuid!) {
  dashboardDelete(guid: $guid) {
    status
    errors { description type }
  }
}
"""

ENTITY_QUERY = """
query Entity($guid: EntityGuid!) {
  actor {
    entity(guid: $guid) {
      guid
      name
      type
      domain
      tags { key values }
      relationships {
        type
        source { entity { guid name } }
        target { entity { guid name } }
      }
    }
  }
}
"""

ENTITY_SEARCH_QUERY = """
query EntitySearch($query: String!) {
  actor {
    entitySearch(query: $query) {
      results {
        entities {
          guid
          name
          type
          domain
          tags { key values }
        }
      }
    }
  }
}
"""

ALERT_POLICIES_QUERY = """
query AlertPolicies($accountId: Int!) {
  actor {
    account(id: $accountId) {
      alerts {
        policiesSearch {
          policies { id name incidentPreference }
        }
      }
    }
  }
}
"""

ALERT_CONDITIONS_QUERY = """
query AlertConditions($accountId: Int!, $policyId: ID!) {
  actor {
    account(id: $accountId) {
      alerts {
        nrqlConditionsSearch(searchCriteria: {policyId: $policyId}) {
          nrqlConditions {
            id
            name
            enabled
            nrql { query }
            terms {
              threshold
              thresholdDuration
              thresholdOccurrences
              operator
              priority
            }
          }
        }
      }
    }
  }
}
"""
