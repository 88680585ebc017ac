"""
Lightweight infra package initializer.

To avoid circular imports, import directly from submodules, for example:

    from botchat.infra.logger import logger
    from botchat.infra.metrics import record_latency_metric
    from botchat.infra.background_client import get_background_client_manager
"""
