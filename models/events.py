"""Collection names and timestamp fields of the scraped Azure DevOps data."""

BUILDS = "builds"
TEST_RUNS = "testruns"
CODE_COVERAGE = "codecoverages"
BUILD_REPORTS = "azurebuildreports"
WORK_ITEM_STATE_CHANGES = "workitemstatechanges"
SONAR_ALERT_HISTORY = "sonaralerthistories"

TIME_FIELDS = {
    BUILDS: "start_time",
    TEST_RUNS: "completed_date",
    CODE_COVERAGE: "date",
    BUILD_REPORTS: "created_at",
    WORK_ITEM_STATE_CHANGES: "date",
    SONAR_ALERT_HISTORY: "date",
}

BUILD_SUCCEEDED = "succeeded"

SONAR_OK = "OK"
SONAR_WARN = "WARN"
SONAR_ERROR = "ERROR"

# Work item fields read from the raw `fields` payload of a state change.
PRIORITY_FIELD = "Microsoft.VSTS.Common.Priority"
NO_GROUP = "no-group"
