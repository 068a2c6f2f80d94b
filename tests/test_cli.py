"""Tests for the typer command line interface."""
import json

import pytest
from typer.testing import CliRunner

from conftest import ORDER_PROJECT
from maptracer.main import app

SEED = 'com.shop.dto.OrderDto.amount'


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv('MAPTRACER_MAX_DEPTH', raising=False)
    monkeypatch.delenv('MAPTRACER_LOG_LEVEL', raising=False)
    return CliRunner()


def _nodes(tree):
    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(node['children'])


def test_version(runner):
    result = runner.invoke(app, ['version'])
    assert result.exit_code == 0
    assert '0.3.0' in result.output


def test_relations(runner):
    result = runner.invoke(app, ['relations', str(ORDER_PROJECT), SEED])
    assert result.exit_code == 0, result.output
    assert 'DIRECT' in result.output
    assert 'relation(s)' in result.output


def test_relations_none_found(runner):
    result = runner.invoke(app, ['relations', str(ORDER_PROJECT), 'com.shop.dto.OrderDto#customer'])
    assert result.exit_code == 0, result.output
    assert 'No mapping relations found' in result.output


def test_hierarchy_json(runner):
    result = runner.invoke(app, ['hierarchy', str(ORDER_PROJECT), SEED, '--json'])
    assert result.exit_code == 0, result.output
    tree = json.loads(result.stdout)
    assert tree['method_name'] == 'amount'
    assert tree['category'] == 'root'
    entries = [n['method_name'] for n in _nodes(tree) if n['category'] == 'entry_point']
    assert entries == ['create']


def test_hierarchy_depth_option(runner):
    result = runner.invoke(app, ['hierarchy', str(ORDER_PROJECT), SEED, '--json', '--max-depth', '1'])
    assert result.exit_code == 0, result.output
    tree = json.loads(result.stdout)
    assert tree['children']
    assert all(not child['children'] for child in tree['children'])


def test_hierarchy_tree_output(runner):
    result = runner.invoke(app, ['hierarchy', str(ORDER_PROJECT), SEED])
    assert result.exit_code == 0, result.output
    assert 'ENTRY' in result.output
    assert 'entry point(s)' in result.output


def test_sites(runner):
    result = runner.invoke(app, ['sites', str(ORDER_PROJECT), SEED])
    assert result.exit_code == 0, result.output
    assert 'Mapping Sites' in result.output


def test_unknown_seed_type_warns(runner):
    result = runner.invoke(app, ['relations', str(ORDER_PROJECT), 'com.shop.Nope.amount'])
    assert result.exit_code == 0, result.output
    assert 'not found in project' in result.output


def test_malformed_seed_fails(runner):
    result = runner.invoke(app, ['relations', str(ORDER_PROJECT), 'amount'])
    assert result.exit_code == 1


def test_missing_project_fails(runner, tmp_path):
    result = runner.invoke(app, ['relations', str(tmp_path / 'missing'), SEED])
    assert result.exit_code == 1
    assert 'does not exist' in result.output


def test_bad_log_level_fails(runner):
    result = runner.invoke(app, ['--log-level', 'LOUD', 'version'])
    assert result.exit_code == 1
