"""Error taxonomy for the orchestration client.

Every error carries a remediation hint so callers can show one specific,
actionable message instead of a generic "something went wrong".
"""


class VideoSearchClientError(Exception):
    """Base exception for video search client errors."""

    remediation = "See the logs for details."

    def describe(self) -> str:
        """Return the error message followed by its remediation hint."""
        return f"{self}\n{self.remediation}"


class NotConfigured(VideoSearchClientError):
    """Raised when an operation needs a backend endpoint but none is set."""

    remediation = "Connect to a backend first by entering its tunnel URL."


class InvalidEndpoint(VideoSearchClientError):
    """Raised when an endpoint URL cannot be used."""

    remediation = "Paste the full tunnel URL, e.g. https://xxxx.ngrok-free.app"


class TransportError(VideoSearchClientError):
    """Raised on network-level failure (DNS, refused connection, timeout)."""

    remediation = (
        "The backend is unreachable. Check that the notebook server cell is still "
        "running and that the tunnel URL has not changed."
    )


class ProtocolError(VideoSearchClientError):
    """Raised when the backend answers HTTP but not JSON.

    A tunnel interstitial page is the usual cause.
    """

    remediation = (
        "The tunnel returned a web page instead of the API. Open the tunnel URL in a "
        "browser once to clear its warning page, make sure you copied the complete "
        "URL, then reconnect."
    )


class InvalidFile(VideoSearchClientError):
    """Raised when a file is rejected before upload."""

    remediation = "Choose an MP4, AVI, MOV, MKV or WebM file under the size limit."


class UploadFailed(VideoSearchClientError):
    """Raised when the required processing upload leg fails."""

    remediation = "The backend did not accept the file. Reconnect and try the upload again."


class DurableStorageError(VideoSearchClientError):
    """Raised by the durable-storage uploader. Never fatal to a pipeline."""

    remediation = "Check CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET."


class SubmissionError(VideoSearchClientError):
    """Raised when the backend rejects a processing request."""

    remediation = "Check the processing options and that the uploaded file still exists."


class JobFailed(VideoSearchClientError):
    """Raised when a processing job reaches the failed state."""

    remediation = "The backend could not process this video. Inspect the message above."


class JobLookupError(VideoSearchClientError):
    """Raised when job status cannot be read or a job cannot be deleted."""

    remediation = "The job may have been removed or the backend restarted."


class InvalidRequest(VideoSearchClientError):
    """Raised locally when a search request is malformed."""

    remediation = "Enter a search query, a result count of 1-100 and a threshold of 0-1."


class SearchError(VideoSearchClientError):
    """Raised when the backend rejects a search."""

    remediation = "The search backend reported an error. Try again or check the index."


class StatsUnavailable(VideoSearchClientError):
    """Raised when index statistics or date filters cannot be loaded."""

    remediation = "Filters are unavailable right now; searching still works."
