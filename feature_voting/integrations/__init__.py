"""External tracker integrations."""

from .azure_devops import AzureDevOpsClient, AzureDevOpsError, convert_work_items

__all__ = ["AzureDevOpsClient", "AzureDevOpsError", "convert_work_items"]
