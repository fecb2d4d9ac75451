"""Tests for encoder probing, command assembly and invocation."""

import os
import shutil
import stat
import sys
import tempfile
import unittest
from unittest import mock

import pytest

from TexBrew.config import PipelineConfig
from TexBrew.core import ImageUsage
from TexBrew.phases.encode import (
    BasisEncoder, KtxEncoder, create_encoder, encode_quality, resolve_tool_command,
)

from fakes import FakeRunner, png_bytes

LINEAR = ImageUsage()
SRGB = ImageUsage(srgb=True)
NORMAL = ImageUsage(normal_map=True)
BOTH = ImageUsage(srgb=True, normal_map=True)


class TestEncodeQuality(unittest.TestCase):
    def test_reference_values(self):
        expected = {0: 0, 1: 3, 50: 128, 99: 252, 100: 255}
        for quality, native in expected.items():
            self.assertEqual(encode_quality(quality), native, quality)

    def test_matches_integer_formula(self):
        for quality in range(101):
            self.assertEqual(encode_quality(quality), (quality * 255 + 50) // 100)

    def test_monotonic(self):
        values = [encode_quality(q) for q in range(101)]
        self.assertEqual(values, sorted(values))
        self.assertLess(encode_quality(0), encode_quality(50))
        self.assertLess(encode_quality(50), encode_quality(100))


class TestResolveToolCommand(unittest.TestCase):
    def test_bare_name_without_override(self):
        self.assertEqual(resolve_tool_command("basisu"), "basisu")
        self.assertEqual(resolve_tool_command("toktx", ""), "toktx")

    def test_override_used_verbatim(self):
        self.assertEqual(
            resolve_tool_command("toktx", "/opt/ktx tools/toktx"), "/opt/ktx tools/toktx"
        )


class TestBasisCommand(unittest.TestCase):
    def _cmd(self, usage, quality=50, scale=1.0, uastc=False, override=None):
        return BasisEncoder(override_path=override).build_command(
            "/tmp/in.png", "/tmp/out.basis", usage, quality, scale, uastc
        )

    def test_linear_image(self):
        self.assertEqual(
            self._cmd(LINEAR),
            ["basisu", "-q", "128", "-mipmap", "-linear",
             "-file", "/tmp/in.png", "-output_file", "/tmp/out.basis"],
        )

    def test_srgb_image_uses_default_color_space(self):
        cmd = self._cmd(SRGB)
        self.assertNotIn("-linear", cmd)
        self.assertNotIn("-normal_map", cmd)

    def test_normal_map(self):
        cmd = self._cmd(NORMAL)
        self.assertIn("-normal_map", cmd)
        self.assertNotIn("-linear", cmd)

    def test_double_tagged_image_emits_only_normal_map(self):
        self.assertEqual(self._cmd(BOTH), self._cmd(NORMAL))

    def test_uastc_is_additive(self):
        cmd = self._cmd(NORMAL, quality=100, uastc=True)
        self.assertIn("-uastc", cmd)
        self.assertIn("-normal_map", cmd)
        self.assertEqual(cmd[cmd.index("-q") + 1], "255")

    def test_scale_is_ignored(self):
        self.assertEqual(self._cmd(LINEAR, scale=0.5), self._cmd(LINEAR, scale=1.0))

    def test_override_path(self):
        self.assertEqual(self._cmd(LINEAR, override="/opt/basisu")[0], "/opt/basisu")


class TestKtxCommand(unittest.TestCase):
    def _cmd(self, usage, quality=50, scale=1.0, uastc=False):
        return KtxEncoder().build_command(
            "/tmp/in.jpg", "/tmp/out.ktx2", usage, quality, scale, uastc
        )

    def test_srgb_image(self):
        self.assertEqual(
            self._cmd(SRGB),
            ["toktx", "--2d", "--t2", "--automipmap",
             "--bcmp", "--qlevel", "128", "--srgb",
             "/tmp/out.ktx2", "/tmp/in.jpg"],
        )

    def test_linear_image(self):
        cmd = self._cmd(LINEAR)
        self.assertIn("--linear", cmd)
        self.assertNotIn("--srgb", cmd)

    def test_normal_map_is_never_srgb(self):
        for usage in (NORMAL, BOTH):
            cmd = self._cmd(usage)
            self.assertIn("--normal_map", cmd)
            self.assertNotIn("--srgb", cmd)
            self.assertIn("--linear", cmd)

    def test_uastc_replaces_quality_and_normal_flags(self):
        cmd = self._cmd(NORMAL, uastc=True)
        self.assertEqual(cmd[cmd.index("--uastc") + 1], "2")
        for flag in ("--bcmp", "--qlevel", "--normal_map", "--srgb"):
            self.assertNotIn(flag, cmd)

    def test_uastc_keeps_transfer_function(self):
        self.assertIn("--srgb", self._cmd(SRGB, uastc=True))

    def test_scale_uses_general_format(self):
        cmd = self._cmd(SRGB, scale=0.5)
        self.assertEqual(cmd[cmd.index("--scale") + 1], "0.5")
        cmd = self._cmd(SRGB, scale=0.25)
        self.assertEqual(cmd[cmd.index("--scale") + 1], "0.25")
        cmd = self._cmd(SRGB, scale=1 / 3)
        self.assertEqual(cmd[cmd.index("--scale") + 1], "0.333333")

    def test_scale_of_one_is_omitted(self):
        self.assertNotIn("--scale", self._cmd(SRGB, scale=1.0))

    def test_output_precedes_input(self):
        cmd = self._cmd(LINEAR)
        self.assertEqual(cmd[-2:], ["/tmp/out.ktx2", "/tmp/in.jpg"])


class _EncoderTestBase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def assertNoLeakedFiles(self):
        self.assertEqual(os.listdir(self.tmpdir), [])


class TestEncoderCheck(_EncoderTestBase):
    def test_basisu_probe_command(self):
        runner = FakeRunner()
        self.assertTrue(BasisEncoder(runner=runner).check())
        self.assertEqual(runner.probes, [["basisu", "-version"]])

    def test_toktx_probe_command_with_override(self):
        runner = FakeRunner()
        self.assertTrue(KtxEncoder(override_path="/opt/toktx", runner=runner).check())
        self.assertEqual(runner.probes, [["/opt/toktx", "--version"]])

    def test_probe_failure(self):
        self.assertFalse(BasisEncoder(runner=FakeRunner(probe_status=127)).check())

    def test_verbose_reports_command_and_status(self):
        enc = KtxEncoder(runner=FakeRunner(probe_status=1), verbose=True)
        with self.assertLogs("texture_pipeline.encode", level="INFO") as cm:
            enc.check()
        self.assertTrue(any("toktx --version => 1" in line for line in cm.output))


class TestEncoderInvocation(_EncoderTestBase):
    def test_round_trip_with_echoing_tool(self):
        payload = png_bytes()
        for cls in (BasisEncoder, KtxEncoder):
            runner = FakeRunner(echo_input=True)
            enc = cls(runner=runner, temp_dir=self.tmpdir)
            result = enc.encode(payload, "image/png", SRGB, quality=50)
            self.assertTrue(result.ok, cls.__name__)
            self.assertEqual(result.data, payload)
            self.assertEqual(result.returncode, 0)
            self.assertNoLeakedFiles()

    def test_returns_bytes_written_by_tool(self):
        runner = FakeRunner(output=b"\xabKTX 20\xbb")
        enc = KtxEncoder(runner=runner, temp_dir=self.tmpdir)
        result = enc.encode(png_bytes(), "image/png", LINEAR, quality=80)
        self.assertTrue(result.ok)
        self.assertEqual(result.data, b"\xabKTX 20\xbb")

    def test_temp_file_extensions(self):
        runner = FakeRunner(echo_input=True)
        BasisEncoder(runner=runner, temp_dir=self.tmpdir).encode(
            b"jpegdata", "image/jpeg", LINEAR, quality=10)
        KtxEncoder(runner=runner, temp_dir=self.tmpdir).encode(
            b"?", "application/x-unknown", LINEAR, quality=10)
        basis_in, basis_out, ktx_in, ktx_out = runner.seen_paths
        self.assertTrue(basis_in.endswith(".jpg"))
        self.assertTrue(basis_out.endswith(".basis"))
        self.assertTrue(ktx_in.endswith(".raw"))
        self.assertTrue(ktx_out.endswith(".ktx2"))
        for path in runner.seen_paths:
            self.assertEqual(os.path.dirname(path), self.tmpdir)

    def test_stream_policy_per_backend(self):
        runner = FakeRunner(echo_input=True)
        BasisEncoder(runner=runner, temp_dir=self.tmpdir).encode(b"x", "image/png", SRGB, 50)
        KtxEncoder(runner=runner, temp_dir=self.tmpdir).encode(b"x", "image/png", SRGB, 50)
        basis_run, ktx_run = runner.runs
        self.assertTrue(basis_run["ignore_stdout"])
        self.assertFalse(basis_run["ignore_stderr"])
        self.assertFalse(ktx_run["ignore_stdout"])
        self.assertFalse(ktx_run["ignore_stderr"])

    def test_non_zero_exit_fails_and_cleans_up(self):
        runner = FakeRunner(run_status=1, output=b"partial")
        enc = BasisEncoder(runner=runner, temp_dir=self.tmpdir)
        result = enc.encode(png_bytes(), "image/png", NORMAL, quality=50)
        self.assertFalse(result.ok)
        self.assertEqual(result.data, b"")
        self.assertEqual(result.returncode, 1)
        self.assertNoLeakedFiles()

    def test_missing_output_fails(self):
        runner = FakeRunner(run_status=0, output=None)
        enc = KtxEncoder(runner=runner, temp_dir=self.tmpdir)
        with self.assertLogs("texture_pipeline.encode", level="ERROR"):
            result = enc.encode(png_bytes(), "image/png", SRGB, quality=50)
        self.assertFalse(result.ok)
        self.assertEqual(result.data, b"")
        self.assertNoLeakedFiles()

    def test_input_write_failure_spawns_nothing(self):
        runner = FakeRunner(echo_input=True)
        enc = BasisEncoder(runner=runner, temp_dir=self.tmpdir)
        with mock.patch("TexBrew.phases.encode.write_file", return_value=False):
            result = enc.encode(png_bytes(), "image/png", SRGB, quality=50)
        self.assertFalse(result.ok)
        self.assertIsNone(result.returncode)
        self.assertEqual(runner.runs, [])
        self.assertNoLeakedFiles()

    def test_verbose_logs_even_on_failure(self):
        runner = FakeRunner(run_status=2)
        enc = BasisEncoder(runner=runner, temp_dir=self.tmpdir, verbose=True)
        with self.assertLogs("texture_pipeline.encode", level="INFO") as cm:
            enc.encode(png_bytes(), "image/png", LINEAR, quality=0)
        self.assertTrue(any(line.endswith("=> 2") for line in cm.output))
        self.assertTrue(any("-q 0" in line for line in cm.output))


class TestCreateEncoder(unittest.TestCase):
    def test_selects_backend_and_override(self):
        config = PipelineConfig()
        config.encoder.backend = "ktx"
        config.encoder.toktx_path = "/opt/toktx"
        config.encoder.verbose = True
        enc = create_encoder(config, runner=FakeRunner())
        self.assertIsInstance(enc, KtxEncoder)
        self.assertEqual(enc.executable, "/opt/toktx")
        self.assertTrue(enc.verbose)

    def test_default_is_basisu_bare_name(self):
        enc = create_encoder(PipelineConfig())
        self.assertIsInstance(enc, BasisEncoder)
        self.assertEqual(enc.executable, "basisu")
        self.assertIsNone(enc.runner.timeout)

    def test_timeout_passed_to_runner(self):
        config = PipelineConfig()
        config.encoder.timeout_seconds = 30
        self.assertEqual(create_encoder(config).runner.timeout, 30)


_FAKE_BASISU = """#!/bin/sh
in=""
out=""
while [ $# -gt 0 ]; do
  case "$1" in
    -version) exit 0 ;;
    -file) in="$2"; shift ;;
    -output_file) out="$2"; shift ;;
  esac
  shift
done
cp "$in" "$out"
"""


@pytest.mark.slow
@unittest.skipIf(sys.platform == "win32", "uses a POSIX shell script as the encoder")
class TestEncoderWithRealProcess(_EncoderTestBase):
    def _write_tool(self, body):
        tool_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tool_dir, True)
        path = os.path.join(tool_dir, "fake-basisu")
        with open(path, "w", encoding="utf-8") as f:
            f.write(body)
        os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR)
        return path

    def test_round_trip_through_script(self):
        tool = self._write_tool(_FAKE_BASISU)
        enc = BasisEncoder(override_path=tool, temp_dir=self.tmpdir)
        self.assertTrue(enc.check())
        payload = png_bytes(8, 8)
        result = enc.encode(payload, "image/png", SRGB, quality=75)
        self.assertTrue(result.ok)
        self.assertEqual(result.data, payload)
        self.assertNoLeakedFiles()

    def test_failing_script(self):
        tool = self._write_tool("#!/bin/sh\nexit 3\n")
        enc = BasisEncoder(override_path=tool, temp_dir=self.tmpdir)
        self.assertFalse(enc.check())
        result = enc.encode(png_bytes(), "image/png", SRGB, quality=75)
        self.assertFalse(result.ok)
        self.assertEqual(result.returncode, 3)
        self.assertNoLeakedFiles()

    def test_missing_tool(self):
        enc = KtxEncoder(
            override_path=os.path.join(self.tmpdir, "no-such-toktx"),
            temp_dir=self.tmpdir,
        )
        self.assertFalse(enc.check())
        self.assertFalse(enc.encode(b"x", "image/png", SRGB, quality=50).ok)
        self.assertNoLeakedFiles()


if __name__ == "__main__":
    unittest.main(verbosity=2)
