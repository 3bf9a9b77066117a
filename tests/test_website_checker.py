"""
Tests for website diagnosis and classification.
"""

import json
import sqlite3
from unittest.mock import Mock, patch

import pytest
from requests.exceptions import ConnectionError, RequestException, SSLError, Timeout
from urllib3.exceptions import (
    ConnectTimeoutError,
    MaxRetryError,
    NameResolutionError,
    NewConnectionError,
    ReadTimeoutError,
)

from src.fetcher import FetchResponse
from src.website_checker import (
    DOWN_STATUSES,
    LeadType,
    WebsiteCheckResult,
    WebsiteStatus,
    _sniff_error_text,
    check_website,
    check_with_isolation,
    classify_fetch_error,
    classify_response,
    is_down,
    lead_type_for,
    looks_like_bot_block,
)


class TestLeadTypes:
    """Lead type is a pure function of status."""

    @pytest.mark.parametrize("status", list(WebsiteStatus))
    def test_down_statuses_are_fix_leads(self, status):
        if status in DOWN_STATUSES:
            assert lead_type_for(status) == LeadType.FIX
            assert is_down(status)

    def test_special_statuses(self):
        assert lead_type_for(WebsiteStatus.UP) is None
        assert lead_type_for(WebsiteStatus.NO_WEBSITE) == LeadType.BUILD
        assert lead_type_for(WebsiteStatus.REDIRECT_SOCIAL) == LeadType.SOCIAL_ONLY

    def test_not_down(self):
        for status in ("up", "no_website", "redirect_social"):
            assert not is_down(status)

    def test_for_status_derives_lead_type(self):
        result = WebsiteCheckResult.for_status("parked", status_detail="Domain parked")
        assert result.status == WebsiteStatus.PARKED
        assert result.lead_type == LeadType.FIX

    def test_to_dict_omits_unset_fields(self):
        result = WebsiteCheckResult.for_status(WebsiteStatus.UP)
        assert result.to_dict() == {"status": "up", "lead_type": None}


class TestNoWebsite:

    @patch("src.website_checker.fetch")
    def test_none_url(self, mock_fetch):
        result = check_website(None, "place_1")

        assert result.to_dict() == {"status": "no_website", "lead_type": "build"}
        mock_fetch.assert_not_called()

    @patch("src.website_checker.fetch")
    def test_blank_url(self, mock_fetch):
        result = check_website("   ", "place_1")

        assert result.status == WebsiteStatus.NO_WEBSITE
        mock_fetch.assert_not_called()


class TestResponseClassification:

    def test_up(self, mock_config, make_session, sample_html_modern):
        session = make_session(text=sample_html_modern)

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.UP
        assert result.lead_type is None
        assert result.social_links == {
            "facebook": "https://www.facebook.com/joesplumbing",
            "instagram": "https://instagram.com/joes.plumbing",
        }

    def test_social_redirect_wins_over_parked_page(
        self, mock_config, make_session, sample_html_godaddy_parked
    ):
        session = make_session(
            text=sample_html_godaddy_parked,
            url="https://www.facebook.com/joesplumbing",
        )

        result = check_website("joesplumbing.example", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.REDIRECT_SOCIAL
        assert result.lead_type == LeadType.SOCIAL_ONLY
        assert result.status_detail == "Redirects to www.facebook.com"
        assert result.platform_detected is None

    def test_parked(self, mock_config, make_session, sample_html_godaddy_parked):
        session = make_session(text=sample_html_godaddy_parked)

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.PARKED
        assert result.lead_type == LeadType.FIX
        assert result.status_detail == "GoDaddy parked"
        assert result.platform_detected == "godaddy"

    def test_hosting_expired(self, mock_config, make_session, sample_html_squarespace_expired):
        session = make_session(text=sample_html_squarespace_expired)

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.HOSTING_EXPIRED
        assert result.status_detail == "Squarespace expired"
        assert result.platform_detected == "squarespace"

    def test_404_with_substantial_body(self, mock_config, make_session, long_paragraph):
        session = make_session(status_code=404, text=f"<html><body>{long_paragraph}</body></html>")

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.HTTP_4XX
        assert result.lead_type == LeadType.FIX
        assert result.status_detail == "404"

    def test_500(self, mock_config, make_session):
        session = make_session(status_code=503, text="Service Unavailable")

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.HTTP_5XX
        assert result.status_detail == "503"

    def test_error_status_skips_signatures(self, mock_config, make_session, sample_html_parked):
        session = make_session(status_code=410, text=sample_html_parked)

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.HTTP_4XX
        assert result.platform_detected is None


class TestBotBlock:
    """403 responses that look like bot protection count as up."""

    def test_short_403_is_up(self, mock_config, make_session):
        session = make_session(status_code=403, text="<html>Forbidden</html>")

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.UP
        assert result.lead_type is None

    def test_long_403_with_cloudflare_is_up(self, mock_config, make_session, long_paragraph):
        html = f"<html><body>{long_paragraph}<p>Performance &amp; security by Cloudflare</p></body></html>"
        session = make_session(status_code=403, text=html)

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.UP

    def test_long_plain_403_is_http_error(self, mock_config, make_session, long_paragraph):
        session = make_session(status_code=403, text=f"<html><body>{long_paragraph}</body></html>")

        result = check_website("example.com", "place_1", config=mock_config, session=session)

        assert result.status == WebsiteStatus.HTTP_4XX
        assert result.status_detail == "403"

    @pytest.mark.parametrize("marker", ["Access Denied", "security check", "Bot protection"])
    def test_markers(self, marker, long_paragraph):
        assert looks_like_bot_block(f"{long_paragraph}<p>{marker}</p>") is True

    def test_long_page_without_markers(self, long_paragraph):
        assert looks_like_bot_block(long_paragraph) is False


class TestFetchErrorClassification:

    def test_timeout(self):
        assert classify_fetch_error(Timeout("read timed out")) == (
            WebsiteStatus.TIMEOUT, "Request timed out"
        )

    def test_ssl_expired(self):
        error = SSLError("certificate verify failed: certificate has expired")
        assert classify_fetch_error(error) == (WebsiteStatus.SSL_EXPIRED, "SSL certificate expired")

    def test_ssl_invalid(self):
        error = SSLError("certificate verify failed: self signed certificate")
        assert classify_fetch_error(error) == (WebsiteStatus.SSL_INVALID, "SSL certificate invalid")

    def test_dns_from_urllib3_reason(self):
        reason = NameResolutionError("nope.invalid", None, OSError("lookup failed"))
        error = ConnectionError(MaxRetryError(None, "/", reason))
        assert classify_fetch_error(error) == (WebsiteStatus.DNS_FAILURE, "Domain not found")

    def test_refused_from_urllib3_reason(self):
        reason = NewConnectionError(None, "Failed to establish a new connection")
        reason.__cause__ = ConnectionRefusedError(111, "refused")
        error = ConnectionError(MaxRetryError(None, "/", reason))
        assert classify_fetch_error(error) == (WebsiteStatus.CONNECTION_REFUSED, "Connection refused")

    def test_read_timeout_wrapped_in_connection_error(self):
        error = ConnectionError(ReadTimeoutError(None, "/", "Read timed out. (read timeout=10)"))
        assert classify_fetch_error(error) == (WebsiteStatus.TIMEOUT, "Request timed out")

    def test_connect_timeout_reason(self):
        reason = ConnectTimeoutError(None, "Connection to example.com timed out")
        error = ConnectionError(MaxRetryError(None, "/", reason))
        assert classify_fetch_error(error)[0] == WebsiteStatus.TIMEOUT

    def test_timed_out_message(self):
        error = RequestException("HTTPSConnectionPool: Read timed out.")
        assert classify_fetch_error(error)[0] == WebsiteStatus.TIMEOUT

    def test_dns_from_message(self):
        error = ConnectionError("Max retries exceeded (Caused by Failed to resolve 'nope.invalid')")
        assert classify_fetch_error(error)[0] == WebsiteStatus.DNS_FAILURE

    def test_refused_from_message(self):
        error = ConnectionError("[Errno 111] Connection refused")
        assert classify_fetch_error(error)[0] == WebsiteStatus.CONNECTION_REFUSED

    def test_unknown_error_keeps_truncated_message(self):
        error = RequestException("x" * 300)
        status, detail = classify_fetch_error(error)
        assert status == WebsiteStatus.CONNECTION_REFUSED
        assert detail == "x" * 100

    @pytest.mark.parametrize("message,expected", [
        ("The operation was aborted", WebsiteStatus.TIMEOUT),
        ("Connection timed out", WebsiteStatus.TIMEOUT),
        ("getaddrinfo ENOTFOUND nope.invalid", WebsiteStatus.DNS_FAILURE),
        ("connect ECONNREFUSED 127.0.0.1:443", WebsiteStatus.CONNECTION_REFUSED),
        ("unable to verify the first certificate", WebsiteStatus.SSL_INVALID),
        ("TLS certificate has expired", WebsiteStatus.SSL_EXPIRED),
    ])
    def test_sniffing(self, message, expected):
        assert _sniff_error_text(message, 100)[0] == expected

    @patch("src.website_checker.fetch")
    def test_check_website_folds_network_errors(self, mock_fetch, mock_config):
        mock_fetch.side_effect = Timeout("slow")

        result = check_website("example.com", "place_1", config=mock_config)

        assert result.status == WebsiteStatus.TIMEOUT
        assert result.lead_type == LeadType.FIX
        assert result.social_links is None


class TestSocialLinkPersistence:

    def test_links_saved_as_json(self, mock_config, make_session, sample_html_modern):
        db = Mock()
        session = make_session(text=sample_html_modern)

        check_website("example.com", "place_1", db=db, config=mock_config, session=session)

        place_id, payload = db.update_business_social_links.call_args[0]
        assert place_id == "place_1"
        assert json.loads(payload)["facebook"] == "https://www.facebook.com/joesplumbing"

    def test_nothing_saved_without_links(self, mock_config, make_session):
        db = Mock()
        session = make_session(text="<html><body>Hello</body></html>")

        check_website("example.com", "place_1", db=db, config=mock_config, session=session)

        db.update_business_social_links.assert_not_called()

    def test_store_failure_is_ignored(self, mock_config, make_session, sample_html_modern):
        db = Mock()
        db.update_business_social_links.side_effect = sqlite3.OperationalError("database is locked")
        session = make_session(text=sample_html_modern)

        result = check_website("example.com", "place_1", db=db, config=mock_config, session=session)

        assert result.status == WebsiteStatus.UP
        assert "facebook" in result.social_links

    def test_real_store(self, test_database, sample_business, mock_config, make_session, sample_html_modern):
        test_database.upsert_business(sample_business)
        session = make_session(text=sample_html_modern)

        check_website(
            sample_business.website_url, sample_business.place_id,
            db=test_database, config=mock_config, session=session,
        )

        stored = json.loads(test_database.get_business(sample_business.place_id).social_links)
        assert stored["instagram"] == "https://instagram.com/joes.plumbing"


class TestIdempotence:

    def test_same_response_same_result(self, mock_config, make_session, sample_html_godaddy_parked):
        session = make_session(text=sample_html_godaddy_parked)

        first = check_website("example.com", "place_1", config=mock_config, session=session)
        second = check_website("example.com", "place_1", config=mock_config, session=session)

        assert first == second


class TestClassifyResponse:

    def test_passes_social_links_through(self):
        response = FetchResponse(status_code=500, url="https://example.com", text="")
        result = classify_response(response, {"yelp": "yelp.com/biz/joes"})
        assert result.social_links == {"yelp": "yelp.com/biz/joes"}


class TestIsolation:

    @patch("src.website_checker.fetch")
    def test_unexpected_errors_propagate_from_check_website(self, mock_fetch, mock_config):
        mock_fetch.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            check_website("example.com", "place_1", config=mock_config)

    @patch("src.website_checker.fetch")
    def test_isolation_folds_unexpected_errors(self, mock_fetch, mock_config):
        mock_fetch.side_effect = RuntimeError("boom")

        result = check_with_isolation("example.com", "place_1", config=mock_config)

        assert result.status == WebsiteStatus.CONNECTION_REFUSED
        assert result.lead_type == LeadType.FIX
        assert result.status_detail == "boom"

    def test_isolation_passes_through(self):
        assert check_with_isolation(None, "place_1").status == WebsiteStatus.NO_WEBSITE


class TestCheckWebsiteOverSockets:
    """End-to-end classification against real sockets on localhost."""

    def test_stalled_body_is_timeout(self, local_server, http_head, direct_session, mock_config):
        def stall(conn, path, stopping):
            conn.sendall(http_head(content_length=5000) + b"<html><body>")
            stopping.wait(5)

        server = local_server(stall)
        mock_config.fetch.request_timeout_seconds = 0.5

        result = check_website(server.url(), "place_stall", config=mock_config, session=direct_session)

        assert result.status == WebsiteStatus.TIMEOUT
        assert result.status_detail == "Request timed out"
        assert server.attempts == 3

    def test_unresolvable_host_is_dns_failure(self, direct_session, mock_config):
        result = check_website(
            "http://leadscan-no-such-host.invalid/", "place_dns",
            config=mock_config, session=direct_session,
        )

        assert result.status == WebsiteStatus.DNS_FAILURE
        assert result.lead_type == LeadType.FIX

    def test_closed_port_is_connection_refused(self, closed_port, direct_session, mock_config):
        result = check_website(
            f"http://127.0.0.1:{closed_port}/", "place_refused",
            config=mock_config, session=direct_session,
        )

        assert result.status == WebsiteStatus.CONNECTION_REFUSED
        assert result.status_detail == "Connection refused"

    def test_working_page_is_up(self, local_server, http_head, direct_session, mock_config, sample_html_modern):
        body = sample_html_modern.encode("utf-8")

        def serve_page(conn, path, stopping):
            conn.sendall(http_head(content_length=len(body)) + body)

        server = local_server(serve_page)

        result = check_website(server.url(), "place_up", config=mock_config, session=direct_session)

        assert result.status == WebsiteStatus.UP
        assert result.social_links["facebook"] == "https://www.facebook.com/joesplumbing"
