"""
Telemetry Client - fetches tank levels from the SOAP telemetry service

The service answers TerminalGetInfo with a tree of <item> elements; the level
is the InfoVariable item whose Name is the configured variable (LIVELLO).
"""

import base64
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from xml.sax.saxutils import escape

import httpx

from lpg_monitor.core.config import Settings

logger = logging.getLogger(__name__)

XSI_TYPE = "{http://www.w3.org/2001/XMLSchema-instance}type"

_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?")
_ISO_LIKE_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


class TelemetryError(Exception):
    """Base class for telemetry fetch failures."""


class DeviceUnreachable(TelemetryError):
    """The telemetry service could not be reached or answered garbage."""


class DeviceOffline(TelemetryError):
    """The service answered but has no level variable for the terminal."""


@dataclass(frozen=True)
class Reading:
    """One level sample for a terminal."""

    terminal_id: str
    value: float | None
    timestamp: datetime | None
    serial: str | None = None


@dataclass(frozen=True)
class RawReading:
    """A fetched sample with the raw strings the service returned."""

    terminal_id: str
    serial: str | None
    raw_value: str | None
    raw_timestamp: str | None

    def to_reading(self) -> Reading:
        return Reading(
            terminal_id=self.terminal_id,
            value=parse_numeric_value(self.raw_value),
            timestamp=parse_timestamp(self.raw_timestamp),
            serial=self.serial,
        )


@dataclass(frozen=True)
class InfoVariable:
    name: str
    value: str | None
    timestamp: str | None
    serial: str | None


def parse_numeric_value(text: str | None) -> float | None:
    """First signed decimal in ``text``; accepts "," decimals and a "%" suffix."""
    if text is None:
        return None
    s = re.sub(r"\s+", "", str(text).strip().replace(",", ".", 1).replace("%", "", 1))
    match = _NUMBER_RE.search(s)
    return float(match.group(0)) if match else None


def parse_timestamp(text: str | None) -> datetime | None:
    """Parse a service timestamp as aware UTC; naive values are taken as UTC."""
    if not text:
        return None
    candidate = str(text).strip()
    try:
        parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        match = _ISO_LIKE_RE.search(candidate)
        if not match:
            return None
        parsed = datetime.fromisoformat(match.group(0))

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, names: tuple[str, ...]) -> str | None:
    """Text of the first direct child whose local name matches (case-insensitive)."""
    wanted = {name.lower() for name in names}
    for child in element:
        if _local_name(child.tag).lower() in wanted:
            text = "".join(child.itertext()).strip()
            if text:
                return text
    return None


def _is_info_variable(element: ET.Element) -> bool:
    xsi_type = element.get(XSI_TYPE) or ""
    return xsi_type.split(":")[-1] == "InfoVariable"


def resolve_named_variable(tree: ET.Element, name: str) -> InfoVariable | None:
    """Find the InfoVariable item called ``name`` anywhere below ``tree``."""
    wanted = name.strip().upper()

    def search(element: ET.Element) -> InfoVariable | None:
        if _local_name(element.tag) == "item" and _is_info_variable(element):
            item_name = _child_text(element, ("Name",)) or ""
            if item_name.upper() == wanted:
                return InfoVariable(
                    name=item_name,
                    value=_child_text(element, ("Value",)),
                    timestamp=_child_text(element, ("Timestamp",)),
                    serial=_child_text(element, ("SerialNumber", "Serial")),
                )
        for child in element:
            found = search(child)
            if found is not None:
                return found
        return None

    return search(tree)


def find_terminal_info(tree: ET.Element) -> tuple[str | None, str | None]:
    """(Id, Name) of the first element carrying both, searching depth-first."""
    for element in tree.iter():
        if _is_info_variable(element):
            continue
        terminal_id = _child_text(element, ("Id",))
        terminal_name = _child_text(element, ("Name",))
        has_id = any(_local_name(c.tag).lower() == "id" for c in element)
        has_name = any(_local_name(c.tag).lower() == "name" for c in element)
        if has_id and has_name and (terminal_id or terminal_name):
            return terminal_id, terminal_name
    return None, None


def build_soap_body(terminal_id: str) -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/" xmlns:api="http://webservice.api.shitek.it/">
  <soap:Body>
    <TerminalGetInfo>
      <TerminalId>{escape(terminal_id)}</TerminalId>
    </TerminalGetInfo>
  </soap:Body>
</soap:Envelope>"""


def parse_terminal_response(xml_text: str, terminal_id: str, variable_name: str) -> RawReading:
    try:
        tree = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise DeviceUnreachable(f"Failed to parse SOAP XML: {e}") from e

    variable = resolve_named_variable(tree, variable_name)
    if variable is None:
        raise DeviceOffline(f"No {variable_name} variable for terminal {terminal_id}")

    top_id, top_name = find_terminal_info(tree)
    return RawReading(
        terminal_id=top_id or terminal_id,
        serial=top_name or variable.serial or variable.name,
        raw_value=variable.value,
        raw_timestamp=variable.timestamp,
    )


class TelemetryClient:
    """Async client for the TerminalGetInfo SOAP call."""

    def __init__(
        self,
        url: str,
        soap_action: str = "",
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.soap_action = soap_action
        self.username = username
        self.password = password
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelemetryClient":
        return cls(
            url=settings.soap_url,
            soap_action=settings.soap_action,
            username=settings.soap_username,
            password=settings.soap_password,
            timeout=settings.soap_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "text/xml; charset=utf-8"}
        if self.soap_action:
            headers["SOAPAction"] = self.soap_action
        if self.username:
            token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            headers["Authorization"] = f"Basic {token}"
        return headers

    async def fetch_reading(self, terminal_id: str, variable_name: str) -> RawReading:
        """Fetch the current value of ``variable_name`` for a terminal.

        Raises DeviceUnreachable on transport/HTTP/XML errors and DeviceOffline
        when the terminal reports no such variable.
        """
        try:
            response = await self._client.post(
                self.url,
                content=build_soap_body(terminal_id),
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise DeviceUnreachable(f"SOAP request failed: {e}") from e

        if response.is_error:
            raise DeviceUnreachable(
                f"Bad response from SOAP service: {response.status_code} {response.text[:200]}"
            )

        reading = parse_terminal_response(response.text, terminal_id, variable_name)
        logger.debug(f"Fetched {terminal_id}: value={reading.raw_value} ts={reading.raw_timestamp}")
        return reading

    async def close(self) -> None:
        await self._client.aclose()
