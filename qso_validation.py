"""
Strict QSO validation, applied to decoded contacts before they are stored.
"""

from adif_decoder import Contact

VALID_BANDS = {
    "2190m", "630m", "560m", "160m",
    "80m", "60m", "40m", "30m",
    "20m", "17m", "15m", "12m",
    "10m", "6m", "4m", "2m",
    "1.25m", "70cm", "33cm", "23cm",
    "13cm", "9cm", "6cm", "3cm",
    "1.25cm", "6mm", "4mm", "2.5mm",
    "2mm", "1mm",
}

CALLSIGN_MIN_LENGTH = 3
CALLSIGN_MAX_LENGTH = 20
GRID_LENGTHS = (4, 6)
MAX_FREQUENCY_MHZ = 300000.0  # 300 GHz
MAX_POWER_W = 10000.0


class ValidationError(Exception):
    """A decoded contact that may not be stored."""

    kind = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


def is_valid_band(band: str) -> bool:
    """Check a band name against the amateur band list (case-insensitive)."""
    return bool(band) and band.strip().lower() in VALID_BANDS


def _check_grid(field: str, grid: str) -> None:
    if len(grid) not in GRID_LENGTHS or not grid.isalnum():
        raise ValidationError(field, f"invalid grid square format: {grid}")


def validate_contact(contact: Contact) -> Contact:
    """
    Validate a decoded contact.

    A contact that ends before it starts is accepted; the decoder already
    flags it.

    Args:
        contact: Contact from decode_record

    Returns:
        The same contact

    Raises:
        ValidationError: describing the first offending field
    """
    callsign = contact.callsign.strip()
    if not callsign:
        raise ValidationError("CALL", "callsign is required")
    if not CALLSIGN_MIN_LENGTH <= len(callsign) <= CALLSIGN_MAX_LENGTH:
        raise ValidationError(
            "CALL", f"callsign must be {CALLSIGN_MIN_LENGTH}-{CALLSIGN_MAX_LENGTH} characters"
        )

    if contact.band and not is_valid_band(contact.band):
        raise ValidationError("BAND", f"invalid band: {contact.band}")
    if contact.band_rx and not is_valid_band(contact.band_rx):
        raise ValidationError("BAND_RX", f"invalid band: {contact.band_rx}")

    if contact.gridsquare:
        _check_grid("GRIDSQUARE", contact.gridsquare)
    if contact.my_gridsquare:
        _check_grid("MY_GRIDSQUARE", contact.my_gridsquare)

    for field, value in (("FREQ", contact.freq), ("FREQ_RX", contact.freq_rx)):
        if value is not None and not 0 <= value <= MAX_FREQUENCY_MHZ:
            raise ValidationError(field, "invalid frequency")

    for field, value in (("TX_PWR", contact.tx_pwr), ("RX_PWR", contact.rx_pwr)):
        if value is not None and not 0 <= value <= MAX_POWER_W:
            raise ValidationError(field, "invalid transmit power" if field == "TX_PWR" else "invalid receive power")

    return contact
