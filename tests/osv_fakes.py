"""Test doubles for OSV.dev HTTP traffic."""
from unittest import mock

from dep_scanner.config import OSV_API_VULN_URL


def fake_response(status_code=200, body=None, json_error=None):
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


def batch_body(*vuln_id_lists):
    """One result entry per query; each entry lists the matched OSV ids."""
    results = []
    for ids in vuln_id_lists:
        results.append({"vulns": [{"id": vuln_id, "modified": "2024-01-01T00:00:00Z"} for vuln_id in ids]}
                       if ids else {})
    return {"results": results}


def fake_session(batch_responses, details=None):
    """
    ``batch_responses`` are returned by successive POSTs; ``details`` maps an OSV id
    to the record (or fake response / exception) served by GET /v1/vulns/<id>.
    """
    details = details or {}
    session = mock.Mock()
    session.post.side_effect = list(batch_responses)

    def get(url, timeout=None):
        vuln_id = url[len(OSV_API_VULN_URL):]
        record = details.get(vuln_id)
        if isinstance(record, Exception):
            raise record
        if record is None:
            return fake_response(404, {"code": 5, "message": "Bug not found."})
        if isinstance(record, mock.Mock):
            return record
        return fake_response(200, record)

    session.get.side_effect = get
    return session
