import json
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from smsledger.logging_utils import (
    JsonFormatter,
    PlainTextFormatter,
    _sanitize_log_field,
    mask_digits,
    mask_upi_handle,
    reset_request_id,
    set_request_id,
)


def make_record(event_name: str, **fields) -> logging.LogRecord:
    record = logging.LogRecord('smsledger', logging.INFO, __file__, 1, event_name, None, None)
    record.event_name = event_name
    record.event_fields = fields
    return record


def test_mask_upi_handle_and_digits():
    assert mask_upi_handle('phonepe@ybl') == 'ph*****@ybl'
    assert mask_upi_handle('ab@okaxis') == 'a*@okaxis'
    assert mask_upi_handle('not-a-handle') == 'not-a-handle'
    assert mask_digits('789123456789') == '********6789'


def test_sanitize_masks_text_and_redacts_secrets():
    assert _sanitize_log_field('detail', 'sent to ravi@oksbi ref 789123456789') == 'sent to ra**@oksbi ref ********6789'
    assert _sanitize_log_field('api_token', 'abc') == '[REDACTED]'
    assert _sanitize_log_field('fields', ['upi_id', 'category']) == ['upi_id', 'category']
    assert _sanitize_log_field('count', 3) == 3


def test_json_formatter_includes_event_and_request_id():
    token = set_request_id('rid-1')
    try:
        line = JsonFormatter().format(make_record('sms.batch_processed', received=3, assembled=2))
    finally:
        reset_request_id(token)
    payload = json.loads(line)
    assert payload['event'] == 'sms.batch_processed'
    assert payload['request_id'] == 'rid-1'
    assert payload['received'] == 3
    assert payload['assembled'] == 2


def test_plain_formatter_renders_fields():
    line = PlainTextFormatter().format(make_record('ledger.merged', inserted=1))
    assert line.startswith('[INFO] ledger.merged')
    assert 'inserted=1' in line


def test_identifier_fields_are_not_masked():
    txn_id = 'txn_sms_9f3a_1736951400000'
    assert _sanitize_log_field('txn_id', txn_id) == txn_id
    assert _sanitize_log_field('path', f'/api/transactions/{txn_id}') == f'/api/transactions/{txn_id}'
    assert _sanitize_log_field('message_id', 'sms_1736951400000') == 'sms_1736951400000'
    assert _sanitize_log_field('detail', txn_id) == 'txn_sms_9f3a_*********0000'
