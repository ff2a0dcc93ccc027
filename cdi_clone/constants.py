"""Annotation, label and naming constants shared with sibling CDI controllers."""

# Annotations persisted on the target claim
ANN_CLONE_REQUEST = "k8s.io/CloneRequest"
ANN_CLONE_OF = "k8s.io/CloneOf"
ANN_CLONE_TOKEN = "cdi.kubevirt.io/storage.clone.token"
ANN_POD_PHASE = "cdi.kubevirt.io/storage.pod.phase"

# Labels carried by the role pods
CLONE_UNIQUE_ID = "cdi.kubevirt.io/storage.clone.cloneUniqeId"
LABEL_TARGET_POD_NAMESPACE = "cdi.kubevirt.io/storage.clone.targetPod.namespace"

# Ownership label applied to managed claims
CDI_LABEL_KEY = "app"
CDI_LABEL_VALUE = "containerized-data-importer"

# Events
CONTROLLER_AGENT_NAME = "clone-controller"
ERR_INCOMPATIBLE_PVC = "ErrIncompatiblePVC"
EVENT_TYPE_WARNING = "Warning"

# Token
CLONE_TOKEN_ISSUER = "cdi-apiserver"
CLONE_TOKEN_LEEWAY_SECONDS = 10
OPERATION_CLONE = "Clone"
PVC_RESOURCE = "persistentvolumeclaims"
APISERVER_PUBLIC_KEY_PATH = "/opt/cdi/apiserver/key/id_rsa.pub"

# Claim and pod phases
CLAIM_BOUND = "Bound"
CLAIM_PENDING = "Pending"
POD_SUCCEEDED = "Succeeded"
WAIT_FOR_FIRST_CONSUMER = "WaitForFirstConsumer"
VOLUME_MODE_BLOCK = "Block"
VOLUME_MODE_FILESYSTEM = "Filesystem"

# Role pods
SOURCE_POD_SUFFIX = "-source-pod"
TARGET_POD_SUFFIX = "-target-pod"
SOURCE_POD_PREFIX = "clone-source-pod-"
TARGET_POD_PREFIX = "clone-target-pod-"
SOURCE_CONTAINER_NAME = "cdi-clone-source"
TARGET_CONTAINER_NAME = "cdi-clone-target"
SOURCE_MOUNT_PATH = "/var/run/cdi/clone/source"
TARGET_MOUNT_PATH = "/var/run/cdi/clone/target"
BLOCK_DEVICE_PATH = "/dev/cdi-block-volume"
SOCKET_HOST_PATH = "/tmp/clone/socket"
HOSTNAME_TOPOLOGY_KEY = "kubernetes.io/hostname"
