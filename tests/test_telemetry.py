"""
Tests for the SOAP telemetry client and value parsing.
"""

import asyncio
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import httpx
import pytest

from lpg_monitor.services.telemetry import (
    DeviceOffline,
    DeviceUnreachable,
    RawReading,
    TelemetryClient,
    build_soap_body,
    parse_numeric_value,
    parse_terminal_response,
    parse_timestamp,
    resolve_named_variable,
)


def make_client(handler, **kwargs) -> TelemetryClient:
    return TelemetryClient(
        url="https://soap.example.com/service.php",
        soap_action="urn:TerminalGetInfo",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestParseNumericValue:
    @pytest.mark.parametrize("text,expected", [
        ("63.5", 63.5),
        ("63,5 %", 63.5),
        (" 42% ", 42.0),
        ("-3", -3.0),
        ("level: 7", 7.0),
        ("105", 105.0),
    ])
    def test_parses(self, text, expected):
        assert parse_numeric_value(text) == expected

    @pytest.mark.parametrize("text", [None, "", "n/a"])
    def test_unparseable(self, text):
        assert parse_numeric_value(text) is None


class TestParseTimestamp:
    def test_iso_with_offset(self):
        assert parse_timestamp("2026-03-10T15:00:00+04:00") == datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2026-03-10 11:00:00") == datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)

    def test_zulu(self):
        assert parse_timestamp("2026-03-10T11:00:00Z") == datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)

    def test_iso_like_substring(self):
        assert parse_timestamp("at 2026-03-10T11:00:00 local") == datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", [None, "", "yesterday"])
    def test_unparseable(self, text):
        assert parse_timestamp(text) is None


class TestResolveNamedVariable:
    def test_finds_variable_case_insensitive(self, soap_response_xml):
        tree = ET.fromstring(soap_response_xml)

        variable = resolve_named_variable(tree, "LIVELLO")

        assert variable is not None
        assert variable.name == "Livello"
        assert variable.value == "63,5 %"
        assert variable.timestamp == "2026-03-10T11:00:00"

    def test_missing_variable(self, soap_response_xml):
        tree = ET.fromstring(soap_response_xml)

        assert resolve_named_variable(tree, "PRESSIONE") is None

    def test_ignores_items_of_other_types(self):
        xml = """<root xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
          <item xsi:type="ns1:InfoAlarm"><Name>LIVELLO</Name><Value>1</Value></item>
        </root>"""

        assert resolve_named_variable(ET.fromstring(xml), "LIVELLO") is None


class TestParseTerminalResponse:
    def test_resolves_terminal_and_serial(self, soap_response_xml):
        raw = parse_terminal_response(soap_response_xml, "requested", "LIVELLO")

        assert raw == RawReading(
            terminal_id="1234",
            serial="SN-00042",
            raw_value="63,5 %",
            raw_timestamp="2026-03-10T11:00:00",
        )

    def test_to_reading(self, soap_response_xml):
        reading = parse_terminal_response(soap_response_xml, "1234", "LIVELLO").to_reading()

        assert reading.terminal_id == "1234"
        assert reading.value == 63.5
        assert reading.timestamp == datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)

    def test_offline_when_variable_missing(self):
        xml = "<Envelope><Body><InfoTerminal><Id>9</Id><Name>X</Name></InfoTerminal></Body></Envelope>"

        with pytest.raises(DeviceOffline):
            parse_terminal_response(xml, "9", "LIVELLO")

    def test_bad_xml(self):
        with pytest.raises(DeviceUnreachable):
            parse_terminal_response("<not xml", "9", "LIVELLO")

    def test_falls_back_to_requested_id(self):
        xml = """<root xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
          <item xsi:type="ns1:InfoVariable">
            <Name>LIVELLO</Name><Value>12</Value><SerialNumber>ABC</SerialNumber>
          </item>
        </root>"""

        raw = parse_terminal_response(xml, "777", "LIVELLO")

        assert raw.terminal_id == "777"
        assert raw.serial == "ABC"
        assert raw.raw_timestamp is None
        assert raw.to_reading().timestamp is None


class TestTelemetryClient:
    def test_fetch_reading_posts_envelope(self, soap_response_xml):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, text=soap_response_xml)

        client = make_client(handler, username="user", password="secret")
        raw = asyncio.run(client.fetch_reading("1234", "LIVELLO"))

        request = captured["request"]
        assert request.method == "POST"
        assert request.headers["SOAPAction"] == "urn:TerminalGetInfo"
        assert request.headers["Content-Type"].startswith("text/xml")
        assert request.headers["Authorization"] == "Basic dXNlcjpzZWNyZXQ="
        assert "<TerminalId>1234</TerminalId>" in request.content.decode()
        assert raw.raw_value == "63,5 %"

    def test_no_auth_header_without_username(self, soap_response_xml):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, text=soap_response_xml)

        asyncio.run(make_client(handler).fetch_reading("1234", "LIVELLO"))

        assert "Authorization" not in captured["request"].headers

    def test_http_error_is_unreachable(self):
        client = make_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(DeviceUnreachable):
            asyncio.run(client.fetch_reading("1234", "LIVELLO"))

    def test_network_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DeviceUnreachable):
            asyncio.run(make_client(handler).fetch_reading("1234", "LIVELLO"))


def test_build_soap_body():
    body = build_soap_body("42")

    root = ET.fromstring(body)
    assert root.find(".//TerminalId").text == "42"


def test_build_soap_body_escapes_terminal_id():
    body = build_soap_body("1<2&3")

    root = ET.fromstring(body)
    assert root.find(".//TerminalId").text == "1<2&3"
    assert "<TerminalId>1&lt;2&amp;3</TerminalId>" in body
