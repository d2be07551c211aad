"""Structured API errors returned to the client as JSON"""

MAX_DETAILS = 4000


class ApiError(Exception):
    """Base class for failures that map onto a JSON error response"""

    code = 'INTERNAL_ERROR'
    status = 500
    title = 'Unknown error'
    message = 'Something went wrong during the download.'
    hint = 'Try again. If the error persists, send the error code to the developer.'

    def __init__(self, message=None, details=None, hint=None, retry_after_ms=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if hint:
            self.hint = hint
        self.details = details[:MAX_DETAILS] if details else None
        self.retry_after_ms = retry_after_ms

    def to_dict(self):
        body = {'code': self.code, 'title': self.title, 'message': self.message}
        if self.hint:
            body['hint'] = self.hint
        if self.details:
            body['details'] = self.details
        if self.retry_after_ms is not None:
            body['retryAfterMs'] = self.retry_after_ms
        return body


class InvalidRequest(ApiError):
    code = 'INVALID_REQUEST'
    status = 400
    title = 'Invalid request'
    message = 'The request body must be a JSON object.'
    hint = None


class MissingUrl(ApiError):
    code = 'MISSING_URL'
    status = 400
    title = 'URL missing'
    message = 'Please provide an NRK address.'
    hint = None


class InvalidUrl(ApiError):
    code = 'INVALID_URL'
    status = 422
    title = 'Invalid URL'
    message = 'Could not interpret the address you pasted.'
    hint = 'Check that the URL is complete and contains no spaces.'


class DomainNotAllowed(ApiError):
    code = 'DOMAIN_NOT_ALLOWED'
    status = 400
    title = 'Domain not allowed'
    message = 'This URL is not from a supported NRK address.'
    hint = 'Use a URL from tv.nrk.no or radio.nrk.no.'


class NotVideoPage(ApiError):
    code = 'NOT_VIDEO_PAGE'
    status = 400
    title = 'No video found'
    message = 'This page is not a video. Paste a direct video link.'
    hint = 'Open the video you want and copy the link from the address bar.'


class SeriesPage(ApiError):
    code = 'SERIES_PAGE'
    status = 400
    title = 'Series without episode'
    message = 'This is a series page without a specific episode.'
    hint = 'Pick a specific episode before copying the link.'


class RateLimited(ApiError):
    code = 'RATE_LIMITED'
    status = 429
    title = 'Too many attempts'
    message = 'You have reached the download limit per minute.'
    hint = 'Wait a little and try again.'


class NotFound(ApiError):
    code = 'NOT_FOUND'
    status = 404
    title = 'Not found'
    message = 'Nothing is tracked for this URL.'
    hint = None


class YtDlpStartTimeout(ApiError):
    code = 'YTDLP_START_TIMEOUT'
    status = 504
    title = 'Timed out while starting'
    message = 'Could not start the download in time.'
    hint = 'Try again, or pick a lower quality.'


class DownloadTimeout(ApiError):
    code = 'DOWNLOAD_TIMEOUT'
    status = 504
    title = 'Download timed out'
    message = 'The download took too long and was stopped.'
    hint = 'Try again later. NRK may be temporarily slow.'


class YtDlpFailed(ApiError):
    code = 'YTDLP_FAILED'
    status = 502
    title = 'Download failed'
    message = 'yt-dlp reported an error during the download.'
    hint = 'Try again, or try another quality.'


class EmptyDownload(ApiError):
    code = 'EMPTY_DOWNLOAD'
    status = 502
    title = 'Empty file received'
    message = 'The server produced an empty video file.'
    hint = 'Try again, or check that the video is available.'


class ProbeFailed(ApiError):
    code = 'PROBE_FAILED'
    status = 502
    title = 'Probe failed'
    message = 'Could not read information about this video.'
    hint = 'Check that the video is available and try again.'
