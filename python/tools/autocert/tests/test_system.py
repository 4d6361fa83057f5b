#!/usr/bin/env python3
"""
Tests for host detection.
"""

import subprocess
from unittest.mock import patch

from autocert.cert_types import WebServerType
from autocert.core import OperatingSystem
from autocert.system import detect_os, detect_web_servers, has_admin_privileges, parse_os_release


def _done(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["cmd"], returncode, stdout, stderr)


def test_parse_os_release():
    values = parse_os_release(
        '# comment\n'
        'NAME="Ubuntu"\n'
        'ID=ubuntu\n'
        'VERSION_ID="24.04"\n'
        '\n'
        "PRETTY_NAME='Ubuntu 24.04 LTS'\n"
    )
    assert values["ID"] == "ubuntu"
    assert values["VERSION_ID"] == "24.04"
    assert values["PRETTY_NAME"] == "Ubuntu 24.04 LTS"
    assert "# comment" not in values


def test_detect_os_macos():
    with patch("autocert.system.platform.mac_ver", return_value=("14.5", ("", "", ""), "arm64")):
        info = detect_os(OperatingSystem.MACOS)
    assert info.distribution == "macos"
    assert info.version == "14.5"


def test_windows_admin_check():
    with patch("autocert.system.run_command", return_value=_done(2)) as mock_run:
        assert not has_admin_privileges(OperatingSystem.WINDOWS)
    mock_run.assert_called_once_with(["net", "session"])


@patch("autocert.system.run_command")
@patch("autocert.system.which")
def test_detect_web_servers(mock_which, mock_run):
    paths = {"nginx": "/usr/sbin/nginx", "httpd": "/usr/sbin/httpd", "systemctl": "/usr/bin/systemctl"}
    mock_which.side_effect = paths.get

    def run(cmd, **kwargs):
        if cmd == ["/usr/sbin/nginx", "-v"]:
            return _done(stderr="nginx version: nginx/1.24.0")
        if cmd == ["/usr/sbin/httpd", "-v"]:
            return _done(stdout="Server version: Apache/2.4.58 (Unix)")
        if cmd == ["systemctl", "is-active", "--quiet", "nginx"]:
            return _done()
        return _done(3)

    mock_run.side_effect = run
    servers = detect_web_servers(OperatingSystem.LINUX)

    assert [(s.type, s.version, s.running) for s in servers] == [
        (WebServerType.NGINX, "1.24.0", True),
        (WebServerType.APACHE, "2.4.58", False),
    ]


@patch("autocert.system.which", return_value=None)
def test_no_web_servers(mock_which):
    assert detect_web_servers(OperatingSystem.LINUX) == []
