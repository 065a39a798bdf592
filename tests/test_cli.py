from __future__ import annotations

import argparse

import pytest

from udpchunk.cli import build_config, main
from udpchunk.config import TransferConfig


@pytest.mark.parametrize("flag", ["--chunk-size", "--ack-timeout-ms", "--max-retries", "--config"])
def test_send_frames_rejects_flags_it_would_ignore(flag, tmp_path):
    with pytest.raises(SystemExit) as info:
        main(["send-frames", "--dest-host", "127.0.0.1", "--source", str(tmp_path), flag, "5"])
    assert info.value.code == 2


@pytest.mark.parametrize("flag", ["--chunk-size", "--ack-timeout-ms", "--max-retries"])
def test_recv_frames_rejects_sender_flags(flag):
    with pytest.raises(SystemExit) as info:
        main(["recv-frames", flag, "5"])
    assert info.value.code == 2


def test_send_frames_with_no_images_is_a_no_op(tmp_path):
    argv = ["send-frames", "--dest-host", "127.0.0.1", "--source", str(tmp_path)]
    assert main(argv + ["--max-datagram-size", "1000"]) == 0


def test_build_config_from_frames_arguments():
    args = argparse.Namespace(max_datagram_size=1000, json=False)
    config = build_config(args)
    assert config.max_datagram_size == 1000
    assert config.chunk_size == TransferConfig().chunk_size


def test_build_config_applies_send_flags_over_file(tmp_path):
    path = tmp_path / "udpchunk.yaml"
    path.write_text("chunk_size: 1024\nmax_retries: 3\n")
    args = argparse.Namespace(
        config=str(path),
        chunk_size=None,
        max_datagram_size=None,
        ack_timeout_ms=100,
        max_retries=7,
        workers=None,
        unreliable=True,
    )
    config = build_config(args)
    assert config.chunk_size == 1024
    assert config.max_retries == 7
    assert config.ack_timeout_ms == 100
    assert config.reliable is False
