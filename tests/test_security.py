import os
import tempfile
import unittest

from agent.exceptions import ForbiddenOperationError, PathTraversalError
from tools.security import check_command, find_forbidden_pattern, resolve_in_base


class TestCommandDenylist(unittest.TestCase):
    def test_destructive_commands_are_rejected(self):
        for command in [
            "rm -rf /",
            "rm -fr ~",
            "cd /tmp && rm -r data",
            "rm --recursive stuff",
            "rm --no-preserve-root /",
            "dd if=/dev/zero of=/dev/sda bs=1M",
            "cat image > /dev/sdb",
            "mkfs.ext4 /dev/sdb1",
            "sudo ls",
            "ls; sudo reboot",
            "echo $(sudo id)",
            "true && su root",
            "echo pwned > /etc/passwd",
            "echo x >> /usr/bin/python",
            "echo key | tee -a /root/.ssh/authorized_keys",
            ":(){ :|:& };:",
            "ls\nsudo whoami",
            "(sudo whoami)",
            "echo `sudo id`",
            "bash -c 'sudo id'",
            "{ sudo id; }",
            "doas reboot",
            "cp evil /etc/passwd",
            "mv x /usr/bin/python3",
            "install -m 755 payload /usr/local/bin/ls",
            "ln -sf /tmp/x /etc/passwd",
            "touch /etc/cron.d/job",
            "chmod 777 /etc/shadow",
            "chown me /root/.bashrc",
        ]:
            with self.subTest(command=command):
                self.assertIsNotNone(find_forbidden_pattern(command))
                with self.assertRaises(ForbiddenOperationError):
                    check_command(command)

    def test_ordinary_commands_pass(self):
        for command in [
            "ls -la",
            "rm notes.txt",
            "grep -r TODO .",
            "cat /etc/hostname",
            "echo hello > out.txt",
            "python3 -c 'print(1)'",
            "head -c 10 /dev/urandom | xxd",
            "summary=$(wc -l < data.csv)",
            "cp notes.txt notes.bak",
            "ls sudoers-notes/ subdir",
            "touch build/stamp",
        ]:
            with self.subTest(command=command):
                self.assertIsNone(find_forbidden_pattern(command))
                check_command(command)

    def test_error_names_the_rule(self):
        with self.assertRaises(ForbiddenOperationError) as ctx:
            check_command("rm -rf /")
        self.assertIn("recursive delete", str(ctx.exception))


class TestPathConfinement(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = os.path.join(self._tmp.name, "workspace")
        os.makedirs(self.base)

    def tearDown(self):
        self._tmp.cleanup()

    def test_paths_inside_base_resolve(self):
        resolved = resolve_in_base(self.base, "notes/a.txt")
        self.assertEqual(resolved, os.path.join(os.path.realpath(self.base), "notes", "a.txt"))
        self.assertEqual(resolve_in_base(self.base, "."), os.path.realpath(self.base))
        self.assertEqual(
            resolve_in_base(self.base, "notes/../b.txt"),
            os.path.join(os.path.realpath(self.base), "b.txt"),
        )

    def test_traversal_is_rejected(self):
        for path in ["../../etc/passwd", "..", "/etc/passwd", "../workspace-other/x"]:
            with self.subTest(path=path):
                with self.assertRaises(PathTraversalError):
                    resolve_in_base(self.base, path)

    def test_symlink_escape_is_rejected(self):
        outside = os.path.join(self._tmp.name, "outside")
        os.makedirs(outside)
        os.symlink(outside, os.path.join(self.base, "link"))

        with self.assertRaises(PathTraversalError):
            resolve_in_base(self.base, "link/secret.txt")
