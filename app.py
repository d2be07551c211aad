#!/usr/bin/env python3
"""NRK Video Downloader API using yt-dlp"""

import logging
import os
import secrets
import subprocess
import time

from flask import Flask, Response, g, jsonify, request
from flask_limiter.errors import RateLimitExceeded
from werkzeug.exceptions import HTTPException

import downloader
from config import Config
from errors import ApiError, InvalidRequest, MissingUrl, NotFound, RateLimited
from filenames import content_disposition, content_type_for, download_name
from hosts import check_url, clean_duplicated_url
from logging_config import configure_logging
from progress import ProgressRegistry
from rate_limit import client_ip, default_limit, download_limit, limiter, retry_after_ms

app = Flask(__name__)
app.config.from_object(Config)
configure_logging(app.config['LOG_LEVEL'])

logger = logging.getLogger('nrk-downloader')

# Progress of running downloads, keyed by URL
downloads = ProgressRegistry()


@app.before_request
def assign_request_id():
    g.request_id = secrets.token_hex(8)


# Security headers
@app.after_request
def add_security_headers(response):
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-XSS-Protection'] = '1; mode=block'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['X-Request-ID'] = g.get('request_id', '-')
    return response


# Registered after assign_request_id so rate-limited requests still get an id
limiter.init_app(app)


@app.errorhandler(ApiError)
def handle_api_error(exc):
    log = logger.error if exc.status >= 500 else logger.warning
    log('%s %s: %s', exc.status, exc.code, exc.message)
    return jsonify(exc.to_dict()), exc.status


@app.errorhandler(RateLimitExceeded)
def handle_rate_limit(exc):
    logger.warning('Rate limit exceeded ip=%s limit=%s', client_ip(), exc.description)
    return handle_api_error(RateLimited(retry_after_ms=retry_after_ms(exc)))


@app.errorhandler(HTTPException)
def handle_http_error(exc):
    return jsonify({
        'code': f'HTTP_{exc.code}',
        'title': exc.name,
        'message': exc.description,
    }), exc.code


def requested_url(value):
    """Validate a submitted URL against the allow-list"""
    if not isinstance(value, str) or not value.strip():
        raise MissingUrl()
    url = clean_duplicated_url(value.strip())
    if url != value.strip():
        logger.debug('Cleaned duplicated URL %r -> %r', value, url)
    check_url(url, app.config['ALLOW_DOMAINS'])
    return url


def download_headers(filename):
    return {
        'Content-Disposition': content_disposition(filename),
        'Cache-Control': 'no-store',
    }


def stream_from_stdout(url, filename):
    """Primary strategy: pipe yt-dlp's stdout straight into the response"""
    stream = downloader.start_stream(
        url,
        ytdlp_bin=app.config['YTDLP_BIN'],
        tracker=downloads,
        request_id=g.request_id,
    )
    stream.first_chunk(app.config['STREAM_START_TIMEOUT'])
    response = Response(iter(stream), mimetype='video/mp4', headers=download_headers(filename))
    response.call_on_close(stream.close)
    return response


def stream_from_tempfile(url, filename):
    """Fallback strategy: download to a temp dir, then send the file"""
    tmpdir, path = downloader.download_to_tempdir(
        url,
        ytdlp_bin=app.config['YTDLP_BIN'],
        tmp_root=app.config['TMP_DIR'],
        timeout=app.config['DOWNLOAD_TIMEOUT'],
        tracker=downloads,
        request_id=g.request_id,
    )
    logger.debug('Starting stream of %s', path)
    headers = download_headers(filename)
    headers['Content-Length'] = str(os.path.getsize(path))
    response = Response(
        downloader.iter_tempfile(tmpdir, path),
        mimetype=content_type_for(path),
        headers=headers,
    )
    # iter_tempfile only cleans up once started; cover responses never iterated
    response.call_on_close(lambda: downloader.cleanup_tempdir(tmpdir))
    return response


@app.route('/api/download', methods=['POST'])
@limiter.limit(download_limit)
def download():
    """Stream an NRK video to the client"""
    started = time.monotonic()
    ip = client_ip()
    logger.info('Download request received ip=%s', ip)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest()
    logger.debug('Raw URL from request body: %r', data.get('url'))
    url = requested_url(data.get('url'))

    title = downloader.get_video_title(
        url,
        ytdlp_bin=app.config['YTDLP_BIN'],
        timeout=app.config['TITLE_TIMEOUT'],
    )
    filename = download_name(title)
    logger.info('Download started url=%s filename=%s ip=%s', url, filename, ip)

    # Try direct streaming first (fastest), fall back to a temp file
    try:
        response = stream_from_stdout(url, filename)
    except downloader.StreamFailed as exc:
        logger.warning('Direct streaming failed, falling back to temp file method: %s', exc)
        response = stream_from_tempfile(url, filename)

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info('Download response ready url=%s filename=%s duration_ms=%d', url, filename, duration_ms)
    return response


@app.route('/api/inspect')
@limiter.limit(default_limit)
def inspect():
    """Describe a video and its available formats"""
    url = requested_url(request.args.get('url'))
    data = downloader.probe(url, ytdlp_bin=app.config['YTDLP_BIN'], timeout=app.config['PROBE_TIMEOUT'])
    return jsonify(downloader.summarize_probe(data))


@app.route('/api/progress')
@limiter.limit(default_limit)
def get_progress():
    """Get download progress"""
    url = requested_url(request.args.get('url'))
    logger.debug('Progress check request url=%s', url)
    snapshot = downloads.get(url)
    if snapshot is None:
        raise NotFound('No download is running for this URL.')
    return jsonify(snapshot)


@app.route('/api/test')
def ytdlp_check():
    """Report whether yt-dlp can be run"""
    try:
        return jsonify(downloader.ytdlp_version(app.config['YTDLP_BIN']))
    except (OSError, subprocess.SubprocessError) as exc:
        logger.error('yt-dlp check failed: %s', exc)
        return jsonify({'success': False, 'error': str(exc)}), 500


if __name__ == '__main__':
    host, port = app.config['HOST'], app.config['PORT']
    print("\n" + "="*50)
    print("  NRK Video Downloader")
    print("="*50)
    print(f"\n  API listening on: http://{host}:{port}")
    print(f"  Allowed domains: {', '.join(app.config['ALLOW_DOMAINS'])}")
    print("\n  Press Ctrl+C to stop the server")
    print("="*50 + "\n")

    app.run(debug=False, host=host, port=port, threaded=True)
