"""Exceptions raised while browsing and extracting search pages."""


class ScrapeError(Exception):
    pass


class MarkupError(ScrapeError):
    """The classifier was handed something that is not page markup."""


class TransientPageError(ScrapeError):
    """A navigation, wait or selector problem that a page refresh may fix."""


class SelectorNotFoundError(TransientPageError):
    pass


class ResultsTimeoutError(TransientPageError):
    pass


class QualityGateError(ScrapeError):
    """Refresh budget exhausted without the page satisfying the quality gate."""

    def __init__(self, page_number: int, refreshes: int):
        self.page_number = page_number
        self.refreshes = refreshes
        super().__init__(
            f"Page {page_number} did not satisfy the quality gate after {refreshes} refreshes"
        )
