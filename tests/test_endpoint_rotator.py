"""Unit tests for endpoint failover."""

import pytest

from chain_sweeper.endpoint_rotator import EndpointRotator
from chain_sweeper.errors import ConfigError

from .conftest import http_error


URLS = ["https://api.one.example", "https://api.two.example", "https://api.three.example"]


def test_starts_at_first_endpoint():
    rotator = EndpointRotator(URLS)

    assert rotator.index == 0
    assert rotator.current == URLS[0]
    assert len(rotator) == 3


@pytest.mark.parametrize("rotations", [0, 1, 2, 3, 4, 7])
def test_rotation_wraps_modulo_length(rotations):
    rotator = EndpointRotator(URLS)

    for _ in range(rotations):
        rotator.rotate(http_error(503), 1)

    assert rotator.index == rotations % len(URLS)
    assert rotator.current == URLS[rotations % len(URLS)]


def test_single_endpoint_rotation_is_noop():
    built = []
    rotator = EndpointRotator(["https://only.example"], factory=lambda url: built.append(url) or url)

    client = rotator.client
    assert rotator.rotate(http_error(502)) == "https://only.example"
    assert rotator.index == 0
    assert rotator.client is client
    assert built == ["https://only.example"]


def test_client_rebuilt_after_rotation():
    rotator = EndpointRotator(URLS, factory=lambda url: {"url": url})

    first = rotator.client
    assert rotator.client is first

    rotator.rotate()

    assert rotator.client == {"url": URLS[1]}
    assert rotator.client is not first


def test_blank_entries_are_ignored():
    rotator = EndpointRotator([" https://a.example ", "", "  "])

    assert rotator.urls == ("https://a.example",)


def test_empty_list_rejected():
    with pytest.raises(ConfigError):
        EndpointRotator([], name="BLURT")


def test_client_requires_factory():
    with pytest.raises(ConfigError):
        EndpointRotator(URLS).client
