#!/usr/bin/env python3
"""
Command line modes.
"""

import json

import pytest

from boltzmann_gen import Metrics, Sample, main, parse_args


def test_parse_args():
    args = parse_args(['test', '--system', 'motzkin', '--size', '15', '--sampler', 'pointed'])
    assert args.mode == 'test'
    assert args.system == 'motzkin'
    assert args.size == 15
    assert args.sampler == 'pointed'


def test_test_mode_plain(capsys):
    main(['test', '--system', 'tree', '--size', '20', '--n', '5', '--no-ansi'])
    out = capsys.readouterr().out
    assert 'tree via singular' in out
    assert len(out.strip().splitlines()) == 6


def test_test_mode_table(capsys):
    main(['test', '--system', 'lambda', '--size', '20', '--n', '3'])
    out = capsys.readouterr().out
    assert 'lambda samples' in out


def test_live_mode(tmp_path):
    out = tmp_path / 'samples.jsonl'
    main(['live', '--system', 'motzkin', '--size', '30', '--max-terms', '5',
          '--out', str(out), '--seed', '1'])
    records = [json.loads(line) for line in out.read_text().splitlines()]
    assert len(records) == 5
    assert all(27 <= r['size'] <= 33 for r in records)
    assert [r['meta']['draw_index'] for r in records] == [0, 1, 2, 3, 4]
    assert records[0]['meta']['x'] == pytest.approx(1 / 3, abs=1e-6)


def test_validate_mode(capsys):
    with pytest.raises(SystemExit) as info:
        main(['validate', '--n', '200', '--seed', '1'])
    assert info.value.code == 0
    assert 'ALL TESTS PASSED' in capsys.readouterr().out


def test_metrics_report():
    metrics = Metrics()
    for size, attempts in ((10, 1), (20, 3)):
        metrics.update(Sample(None, size, attempts), 0.001)
    report = metrics.report()
    assert report['samples'] == 2
    assert report['mean_size'] == 15
    assert report['mean_attempts'] == 2
    assert report['acceptance_rate'] == 0.5
