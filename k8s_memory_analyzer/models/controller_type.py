from enum import Enum


class ControllerType(str, Enum):
    """Kind of controller owning a pod, inferred from the pod name."""

    DEPLOYMENT = "Deployment"
    DAEMONSET = "DaemonSet"
    STATEFULSET = "StatefulSet"
    OTHER = "Other"
