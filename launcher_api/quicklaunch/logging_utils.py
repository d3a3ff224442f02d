import logging
import time
from typing import Optional, Sequence


def setup_launcher_logger(name: str = "quicklaunch", level: str = "INFO") -> logging.Logger:
    """Setup standardized logger for launcher components with UTF-8 support."""
    logger = logging.getLogger(name)

    if not logger.handlers:  # Avoid duplicate handlers
        handler = logging.StreamHandler()
        # Paths on non-ASCII volumes must not break the console
        if hasattr(handler.stream, 'reconfigure'):
            handler.stream.reconfigure(encoding='utf-8')

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def log_search(logger: logging.Logger,
               request_id: str,
               query: str,
               outcome: str,
               duration_ms: float,
               candidates: Optional[Sequence[str]] = None,
               files_scanned: int = 0,
               roots: Optional[Sequence[str]] = None,
               error: Optional[str] = None) -> None:
    """Log one finished search in a structured format."""

    log_data = {
        "request_id": request_id,
        "query": query,
        "outcome": outcome,
        "files_scanned": files_scanned,
        "duration_ms": round(duration_ms, 1)
    }

    if roots:
        log_data["roots"] = list(roots)

    if candidates:
        log_data["candidates_count"] = len(candidates)
        log_data["sample_candidates"] = [_shorten(c) for c in list(candidates)[:3]]
        if len(candidates) > 3:
            log_data["more_candidates"] = len(candidates) - 3

    if error:
        log_data["error"] = error

    outcome_desc = outcome.replace("_", " ").title()

    if error:
        logger.error(f"Search {outcome_desc}: {log_data}")
    else:
        logger.info(f"Search {outcome_desc}: {log_data}")


def _shorten(value: str, limit: int = 200) -> str:
    if len(value) > limit:
        return value[:limit - 3] + "..."
    return value


def create_request_id() -> str:
    """Create unique request ID for tracking one search."""
    return f"search_{int(time.time() * 1000)}"
