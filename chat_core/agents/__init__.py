from .orchestrator import EMPTY_REPLY_APOLOGY, ProviderOrchestrator

__all__ = ["EMPTY_REPLY_APOLOGY", "ProviderOrchestrator"]
