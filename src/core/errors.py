"""
src/core/errors.py: Quote pipeline error taxonomy

Fatal errors abort the request and reach the Flask route, which turns them
into a JSON error payload naming the failing stage. Non-fatal ones are caught
where they happen and replaced by a default (empty list, placeholder, raw name).
"""


class QuoteError(RuntimeError):
    """Base class. `stage` names the pipeline step that failed."""
    stage = "quote"
    fatal = True

    def __init__(self, message="", stage=None):
        super().__init__(message)
        if stage:
            self.stage = stage


class StoreUnavailable(QuoteError):
    """Catalog database missing, unreadable or corrupt."""
    stage = "catalog"
    fatal = False


class TemplateMissing(QuoteError):
    stage = "template"


class RemoteFetchFailed(QuoteError):
    stage = "image_fetch"
    fatal = False


class MalformedVendorPayload(QuoteError):
    stage = "vendor"
    fatal = False


class RenderTimeout(QuoteError):
    stage = "render"


class SerializationFailure(QuoteError):
    stage = "render"
