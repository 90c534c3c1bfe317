from yxorp.addressing.protocols import (
    PROTOCOL_PORTS,
    normalize_scheme,
    port_for,
    scheme_for,
)


def test_well_known_ports():
    assert port_for("http") == 80
    assert port_for("https") == 443
    assert port_for("ftp") == 21
    assert port_for("ssh") == 22
    assert port_for("redis") == 6379


def test_scheme_is_normalized():
    assert normalize_scheme("HTTPS:") == "https"
    assert port_for("HTTPS:") == 443


def test_unmapped_scheme_falls_back_to_default_scheme_port():
    assert port_for("made-up") is None
    assert port_for("made-up", "https") == 443


def test_scheme_for_port():
    assert scheme_for(80) == "http"
    assert scheme_for(443) == "https"
    assert scheme_for(21) == "ftp"


def test_alternate_ports_map_back_to_http_schemes():
    assert scheme_for(8080) == "http"
    assert scheme_for(8443) == "https"


def test_unmapped_port_defaults():
    assert scheme_for(12345) is None
    assert scheme_for(12345, "https") == "https"


def test_table_is_bidirectional():
    for scheme, port in PROTOCOL_PORTS.items():
        assert scheme_for(port) == scheme
