"""Root logging setup that stamps every record with the current request id"""

import logging

from flask import g, has_request_context

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(request_id)s] %(name)s: %(message)s'


class RequestIdFilter(logging.Filter):
    """Stamp records with the id of the request being served ('-' outside one)"""

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = g.get('request_id', '-') if has_request_context() else '-'
        return True


def configure_logging(level='INFO'):
    logging.basicConfig(level=level, format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())
