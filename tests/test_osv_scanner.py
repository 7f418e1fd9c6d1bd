import unittest
from unittest import mock

import requests

from dep_scanner.config import OSV_API_BATCH_URL, ScannerConfig
from dep_scanner.models import Ecosystem, PackageInfo
from dep_scanner.osv_scanner import (OsvApiError, OsvClient, OsvRateLimitError, OsvResponseError,
                                     build_query, validate_batch_response)
from osv_fakes import batch_body, fake_response, fake_session

FLASK = PackageInfo("flask", "0.12", Ecosystem.PYPI, "requirements.txt")
LODASH = PackageInfo("lodash", "4.17.20", Ecosystem.NPM, "package.json")
SERDE = PackageInfo("serde", "1.0.100", Ecosystem.CRATES_IO, "Cargo.toml")

FLASK_RECORD = {
    "id": "GHSA-562c-5r94-xh97",
    "summary": "Flask denial of service",
    "aliases": ["CVE-2018-1000656"],
}
LODASH_RECORD = {"id": "GHSA-35jh-r3h4-6jhm", "summary": "Command injection in lodash"}


class TestBuildQuery(unittest.TestCase):
    def test_query_shape(self):
        self.assertEqual(build_query(FLASK), {
            "package": {"ecosystem": "PyPI", "name": "flask"},
            "version": "0.12",
        })


class TestValidateBatchResponse(unittest.TestCase):
    def test_accepts_documented_shape(self):
        body = {"results": [{}, {"vulns": [{"id": "A"}]}, {"vulns": None}]}
        self.assertEqual(validate_batch_response(body, 3), [[], [{"id": "A"}], []])

    def test_rejects_unexpected_shapes(self):
        bad_bodies = [
            [],
            {"data": []},
            {"results": [{}]},
            {"results": ["x", {}]},
            {"results": [{"vulns": {}}, {}]},
            {"results": [{"vulns": [{"summary": "no id"}]}, {}]},
        ]
        for body in bad_bodies:
            with self.subTest(body=body):
                with self.assertRaises(OsvResponseError):
                    validate_batch_response(body, 2)


class TestOsvClientQuery(unittest.TestCase):
    def setUp(self):
        self.sleep = mock.Mock()

    def make_client(self, session, **config):
        return OsvClient(ScannerConfig(**config), session=session, sleep=self.sleep)

    def test_results_keyed_by_package_identity(self):
        session = fake_session(
            [fake_response(200, batch_body([FLASK_RECORD["id"]], [], [LODASH_RECORD["id"]]))],
            details={FLASK_RECORD["id"]: FLASK_RECORD, LODASH_RECORD["id"]: LODASH_RECORD},
        )
        result = self.make_client(session).query_packages([FLASK, SERDE, LODASH])

        self.assertEqual(result, {
            "PyPI:flask@0.12": [FLASK_RECORD],
            "npm:lodash@4.17.20": [LODASH_RECORD],
        })
        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], OSV_API_BATCH_URL)
        self.assertEqual(len(kwargs["json"]["queries"]), 3)
        self.sleep.assert_not_called()

    def test_empty_input_makes_no_requests(self):
        session = fake_session([])
        self.assertEqual(self.make_client(session).query_packages([]), {})
        session.post.assert_not_called()

    def test_batches_are_capped_and_sequential(self):
        packages = [PackageInfo(f"pkg-{i}", "1.0.0", Ecosystem.NPM, "package.json") for i in range(5)]
        session = fake_session([
            fake_response(200, batch_body([], [])),
            fake_response(200, batch_body([], [])),
            fake_response(200, batch_body([])),
        ])
        result = self.make_client(session, batch_size=2).query_packages(packages)

        self.assertEqual(result, {})
        sizes = [len(call.kwargs["json"]["queries"]) for call in session.post.call_args_list]
        self.assertEqual(sizes, [2, 2, 1])

    def test_duplicate_packages_are_queried_once(self):
        twin = PackageInfo("flask", "0.12", Ecosystem.PYPI, "other/requirements.txt")
        session = fake_session([fake_response(200, batch_body([FLASK_RECORD["id"]]))],
                               details={FLASK_RECORD["id"]: FLASK_RECORD})
        result = self.make_client(session).query_packages([FLASK, twin])

        self.assertEqual(list(result), ["PyPI:flask@0.12"])
        self.assertEqual(len(session.post.call_args.kwargs["json"]["queries"]), 1)

    def test_shared_vulnerability_fetched_once_per_batch(self):
        flask_dev = PackageInfo("flask", "0.11", Ecosystem.PYPI, "requirements.txt")
        session = fake_session([fake_response(200, batch_body([FLASK_RECORD["id"]], [FLASK_RECORD["id"]]))],
                               details={FLASK_RECORD["id"]: FLASK_RECORD})
        result = self.make_client(session).query_packages([FLASK, flask_dev])

        self.assertEqual(session.get.call_count, 1)
        self.assertEqual(result["PyPI:flask@0.11"], [FLASK_RECORD])

    def test_rate_limit_retried_once(self):
        session = fake_session(
            [fake_response(429), fake_response(200, batch_body([FLASK_RECORD["id"]]))],
            details={FLASK_RECORD["id"]: FLASK_RECORD},
        )
        result = self.make_client(session, rate_limit_delay=2.0).query_packages([FLASK])

        self.assertEqual(result, {"PyPI:flask@0.12": [FLASK_RECORD]})
        self.assertEqual(session.post.call_count, 2)
        self.sleep.assert_called_once_with(2.0)

    def test_second_rate_limit_is_fatal(self):
        session = fake_session([fake_response(429), fake_response(429), fake_response(200, batch_body([]))])
        with self.assertRaises(OsvRateLimitError) as ctx:
            self.make_client(session).query_packages([FLASK])

        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(session.post.call_count, 2)

    def test_rate_limit_then_server_error_is_fatal(self):
        session = fake_session([fake_response(429), fake_response(503)])
        with self.assertRaises(OsvApiError) as ctx:
            self.make_client(session).query_packages([FLASK])
        self.assertEqual(ctx.exception.status_code, 503)

    def test_failed_batch_aborts_later_batches(self):
        session = fake_session([fake_response(429), fake_response(429)])
        with self.assertRaises(OsvRateLimitError):
            self.make_client(session, batch_size=1).query_packages([FLASK, LODASH])
        self.assertEqual(session.post.call_count, 2)

    def test_other_http_errors_are_not_retried(self):
        session = fake_session([fake_response(500), fake_response(200, batch_body([]))])
        with self.assertRaises(OsvApiError) as ctx:
            self.make_client(session).query_packages([FLASK])

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(session.post.call_count, 1)
        self.sleep.assert_not_called()

    def test_transport_errors_become_api_errors(self):
        session = mock.Mock()
        session.post.side_effect = requests.exceptions.ConnectionError("connection refused")
        with self.assertRaises(OsvApiError) as ctx:
            self.make_client(session).query_packages([FLASK])
        self.assertIsNone(ctx.exception.status_code)

    def test_undecodable_batch_body(self):
        session = fake_session([fake_response(200, json_error=ValueError("Expecting value"))])
        with self.assertRaises(OsvResponseError):
            self.make_client(session).query_packages([FLASK])

    def test_misaligned_batch_body(self):
        session = fake_session([fake_response(200, batch_body([], []))])
        with self.assertRaises(OsvResponseError):
            self.make_client(session).query_packages([FLASK])


class TestOsvClientDetails(unittest.TestCase):
    def make_client(self, session):
        return OsvClient(ScannerConfig(), session=session, sleep=mock.Mock())

    def test_failed_detail_fetch_falls_back_to_batch_record(self):
        session = fake_session(
            [fake_response(200, batch_body([FLASK_RECORD["id"], "PYSEC-2019-179"]))],
            details={
                FLASK_RECORD["id"]: FLASK_RECORD,
                "PYSEC-2019-179": requests.exceptions.Timeout("timed out"),
            },
        )
        diagnostics = []
        result = self.make_client(session).query_packages([FLASK], diagnostics)

        records = result["PyPI:flask@0.12"]
        self.assertEqual(records[0], FLASK_RECORD)
        self.assertEqual(records[1]["id"], "PYSEC-2019-179")
        self.assertNotIn("summary", records[1])
        self.assertEqual([d.kind for d in diagnostics], ["detail_fetch_failed"])

    def test_detail_http_error_and_bad_record_fall_back(self):
        session = fake_session(
            [fake_response(200, batch_body(["A", "B", "C"]))],
            details={"A": fake_response(500), "B": {"summary": "no id"},
                     "C": fake_response(200, json_error=ValueError("bad json"))},
        )
        diagnostics = []
        result = self.make_client(session).query_packages([FLASK], diagnostics)

        self.assertEqual([r["id"] for r in result["PyPI:flask@0.12"]], ["A", "B", "C"])
        self.assertEqual(len(diagnostics), 3)

    def test_get_vuln_details(self):
        session = fake_session([], details={FLASK_RECORD["id"]: FLASK_RECORD})
        client = self.make_client(session)
        self.assertEqual(client.get_vuln_details(FLASK_RECORD["id"]), FLASK_RECORD)
        self.assertIsNone(client.get_vuln_details("UNKNOWN-1"))
        self.assertIsNone(client.get_vuln_details(""))


class TestOsvClientLifecycle(unittest.TestCase):
    def test_injected_session_is_not_closed(self):
        session = mock.Mock()
        with OsvClient(session=session):
            pass
        session.close.assert_not_called()

    def test_owned_session_is_closed(self):
        with mock.patch("dep_scanner.osv_scanner.requests.Session") as session_cls:
            with OsvClient():
                pass
        session_cls.return_value.close.assert_called_once()


if __name__ == '__main__':
    unittest.main()
