API_GROUP = "devops.kubesphere.io"
API_VERSION = "v1alpha3"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
PIPELINE_PLURAL = "pipelines"
PIPELINE_KIND = "Pipeline"

CONTROLLER_NAME = "pipeline-controller"

# Annotation keys owned by the controller
ANNOTATION_SYNC_STATUS = f"pipeline.{API_GROUP}/syncstatus"
ANNOTATION_SPEC_HASH = f"pipeline.{API_GROUP}/spechash"

STATUS_SUCCESSFUL = "successful"

FINALIZER = f"finalizers.kubesphere.io/{PIPELINE_PLURAL}"

# Namespace eligibility
LABEL_DEVOPS_PROJECT = "kubesphere.io/devopsproject"
DEVOPS_PROJECT_KIND = "DevOpsProject"

# Event reasons
REASON_SYNCED = "Synced"
REASON_DELETE_FAILED = "DeleteFailed"
REASON_FINALIZER_REMOVED = "FinalizerRemoved"
