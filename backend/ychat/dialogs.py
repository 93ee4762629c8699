import logging

logger = logging.getLogger(__name__)


class Dialogs:
    """Blocking dialogs shown to the user.

    The default implementation only logs: alerts are recorded, confirmations
    are declined and prompts return None. Front ends subclass it.
    """

    def alert(self, message: str) -> None:
        logger.warning("alert: %s", message)

    def confirm(self, message: str) -> bool:
        logger.info("confirm (declined): %s", message)
        return False

    def prompt(self, message: str, default: str | None = None) -> str | None:
        logger.info("prompt (no answer): %s", message)
        return None
