"""GraphQL documents for the operations this package consumes.

Each document is a named operation; the name is also passed as
``operationName`` so server-side logs line up with ours.
"""

O365_ORGS = "O365Orgs"
START_BULK_RECOVERY = "StartBulkRecovery"
BULK_RECOVERY_PROGRESS = "BulkRecoveryProgress"
CANCEL_BULK_RECOVERY = "CancelBulkRecovery"
COMPLETE_OPERATIONAL_RECOVERY = "CompleteOperationalRecovery"

O365_ORGS_QUERY = """
query O365Orgs($first: Int, $after: String) {
  o365Orgs(first: $first, after: $after) {
    nodes {
      id
      name
      status
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

START_BULK_RECOVERY_MUTATION = """
mutation StartBulkRecovery($input: StartBulkRecoveryInput!) {
  startBulkRecovery(input: $input) {
    bulkRecoveryInstanceId
    taskchainId
    jobId
    error
  }
}
"""

BULK_RECOVERY_PROGRESS_QUERY = """
query BulkRecoveryProgress($input: GetBulkRecoveryProgressInput!) {
  bulkRecoveryProgress(input: $input) {
    status
    currentStep
    failedObjects
    succeededObjects
    inProgressObjects
    totalObjects
    objectsWithoutSnapshot
    groupsProcessed
    totalGroups
    createTime
    startTime
    endTime
    elapsedTime
    failureReason
    failureActionType
    groupProgress {
      groupName
      groupId
      groupType
      workloadProgress {
        workloadType
        status
        failedObjects
        succeededObjects
        inProgressObjects
        totalObjects
      }
    }
  }
}
"""

CANCEL_BULK_RECOVERY_MUTATION = """
mutation CancelBulkRecovery($input: CancelBulkRecoveryInput!) {
  cancelBulkRecovery(input: $input)
}
"""

COMPLETE_OPERATIONAL_RECOVERY_MUTATION = """
mutation CompleteOperationalRecovery($input: CompleteOperationalRecoveryInput!) {
  completeOperationalRecovery(input: $input) {
    taskchainId
    jobId
    error
  }
}
"""
