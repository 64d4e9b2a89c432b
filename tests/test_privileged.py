"""Tests for remote ownership and permission remediation."""

from __future__ import annotations

import unittest
from unittest import mock

from sitepush import types
from sitepush.credentials import Secret, SudoPasswordCache
from sitepush.ssh import privileged
from sitepush.ssh.selector import Transport, TransportMode
from sitepush.ssh.transport import SSHCommandError, SSHResult

TARGET = types.DeploymentTarget(host="nas.local", user="deploy", remote_path="/srv/www/site")
SERVED = types.RemediationProfile(label="post-sync", owner="33:33", dir_mode="755", file_mode="644")


class TestRemediationScript(unittest.TestCase):
    def test_steps_are_chained(self):
        script = privileged.build_remediation_script(SERVED, "/srv/www/site")
        self.assertEqual(
            script,
            "chown -R -H 33:33 /srv/www/site"
            " && find -H /srv/www/site -type d -exec chmod 755 {} +"
            " && find -H /srv/www/site -type f -exec chmod 644 {} +",
        )

    def test_skip_missing_guards_the_chain(self):
        script = privileged.build_remediation_script(SERVED, "/srv/my site", skip_missing=True)
        self.assertTrue(script.startswith("if [ -e '/srv/my site' ]; then chown -R -H"))
        self.assertTrue(script.endswith("; fi"))

    def test_sudo_reads_password_from_stdin(self):
        command = privileged.build_remote_command(SERVED, "/srv/www/site")
        self.assertEqual(command[:6], ["sudo", "-S", "-p", "", "sh", "-c"])


class TestRunPrivileged(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = mock.Mock()
        self.transport.target = TARGET
        self.transport.run.return_value = SSHResult(exit_code=0, stdout="", stderr="")
        self.password = Secret(b"sudo-pw")

    def tearDown(self) -> None:
        self.password.clear()

    def test_password_goes_to_stdin_not_command(self):
        result = privileged.run_privileged(
            self.transport, profile=SERVED, root="/srv/www/site", sudo_password=self.password
        )
        self.assertTrue(result.ok)
        args, kwargs = self.transport.run.call_args
        self.assertEqual(kwargs["input_data"], b"sudo-pw\n")
        self.assertFalse(any("sudo-pw" in part for part in args[0]))

    def test_failure_reports_exit_code_and_reason(self):
        self.transport.run.return_value = SSHResult(
            exit_code=1, stdout="", stderr="sudo: 1 incorrect password attempt"
        )
        result = privileged.run_privileged(
            self.transport, profile=SERVED, root="/srv/www/site", sudo_password=self.password
        )
        self.assertFalse(result.ok)
        self.assertEqual(result.exit_code, 1)
        self.assertIn("incorrect password", result.reason)

    def test_command_error_is_a_failure(self):
        self.transport.run.side_effect = SSHCommandError("ssh missing")
        result = privileged.run_privileged(
            self.transport, profile=SERVED, root="/srv/www/site", sudo_password=self.password
        )
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "ssh missing")


class TestSudoPasswordFor(unittest.TestCase):
    def test_injected_transport_reuses_login_secret(self):
        secret = Secret(b"login-pw")
        transport = Transport(target=TARGET, mode=TransportMode.SECRET_INJECTED, secret=secret)
        prompt = mock.Mock()
        cache = SudoPasswordCache("nas.local", environ={}, prompt=prompt)
        self.assertIs(privileged.sudo_password_for(transport, cache), secret)
        prompt.assert_not_called()
        secret.clear()

    def test_ambient_transport_prompts_once(self):
        transport = Transport(target=TARGET)
        prompt = mock.Mock(return_value="typed")
        cache = SudoPasswordCache("nas.local", environ={}, prompt=prompt)
        first = privileged.sudo_password_for(transport, cache)
        second = privileged.sudo_password_for(transport, cache)
        self.assertIs(first, second)
        prompt.assert_called_once()
        cache.clear()


if __name__ == "__main__":
    unittest.main()
