"""Tests for remote URL validation."""

import dataclasses

import pytest

from activitypub_stage.services.urls import UnsafeURLError, ensure_fetchable, host_of, strip_fragment


@pytest.mark.parametrize(
    "url",
    [
        "https://remote.example/users/bob",
        "https://8.8.8.8/inbox",
        "https://[2606:4700:4700::1111]/inbox",
    ],
)
def test_public_https_is_fetchable(federation_config, url: str) -> None:
    assert ensure_fetchable(url, federation_config) == url


@pytest.mark.parametrize(
    "url",
    [
        "http://remote.example/users/bob",
        "ftp://remote.example/file",
        "https:///no-host",
        "https://localhost/inbox",
        "https://printer.local/inbox",
        "https://127.0.0.1/inbox",
        "https://10.0.0.5/inbox",
        "https://192.168.1.1/inbox",
        "https://169.254.169.254/latest/meta-data",
        "https://[::1]/inbox",
        "https://0.0.0.0/inbox",
    ],
)
def test_unsafe_urls_refused(federation_config, url: str) -> None:
    with pytest.raises(UnsafeURLError):
        ensure_fetchable(url, federation_config)


def test_private_addresses_allowed_when_configured(federation_config) -> None:
    config = dataclasses.replace(federation_config, allow_private_addresses=True)
    assert ensure_fetchable("http://127.0.0.1:8080/inbox", config)
    with pytest.raises(UnsafeURLError):
        ensure_fetchable("gopher://127.0.0.1/", config)


def test_host_and_fragment_helpers() -> None:
    assert host_of("https://Remote.Example:8443/users/bob") == "remote.example"
    assert host_of("not a url") == ""
    assert strip_fragment("https://remote.example/users/bob#main-key") == "https://remote.example/users/bob"
