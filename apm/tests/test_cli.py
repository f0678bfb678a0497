"""Tests for CLI"""

import json

import pytest

from apm.cli.main import create_parser, main, print_response
from apm.core.models import Response, error_response
from apm.core.transaction import Outcome


class TestParser:
    """Tests for argument parser."""

    def test_version_flag(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(['--version'])

    def test_install_command(self):
        parser = create_parser()
        args = parser.parse_args(['install', 'htop', 'mc+'])
        assert args.command == 'install'
        assert args.packages == ['htop', 'mc+']
        assert args.apply is False
        assert args.auto is False

    def test_install_alias_with_flags(self):
        parser = create_parser()
        args = parser.parse_args(['i', '-y', '--apply', 'htop'])
        assert args.command == 'i'
        assert args.auto is True
        assert args.apply is True

    def test_remove_alias(self):
        parser = create_parser()
        args = parser.parse_args(['rm', 'nano'])
        assert args.command == 'rm'
        assert args.packages == ['nano']

    def test_install_requires_packages(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(['install'])

    def test_check_install(self):
        parser = create_parser()
        args = parser.parse_args(['check-install', 'htop', '--json'])
        assert args.command == 'check-install'
        assert args.json is True

    def test_list_arguments(self):
        parser = create_parser()
        args = parser.parse_args(['l', '--sort', 'name', '--order', 'desc', '--limit', '5',
                                  '--filter-field', 'section', '--filter-value', 'Editors'])
        assert args.command == 'l'
        assert args.sort == 'name'
        assert args.order == 'desc'
        assert args.limit == 5
        assert args.offset == 0
        assert args.filter_field == 'section'
        assert args.force_update is False

    def test_search_installed(self):
        parser = create_parser()
        args = parser.parse_args(['s', 'vim', '-i'])
        assert args.pattern == 'vim'
        assert args.installed is True

    def test_image_history(self):
        parser = create_parser()
        args = parser.parse_args(['image', 'history', '--limit', '3'])
        assert args.image_command == 'history'
        assert args.limit == 3
        assert args.image == ''

    def test_distrobox_install(self):
        parser = create_parser()
        args = parser.parse_args(['d', 'install', '-c', 'alt', 'firefox', '--export'])
        assert args.command == 'd'
        assert args.box_command == 'install'
        assert args.container == 'alt'
        assert args.package == 'firefox'
        assert args.export is True

    def test_distrobox_container_required(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(['distrobox', 'search', 'firefox'])

    def test_distrobox_container_remove(self):
        parser = create_parser()
        args = parser.parse_args(['distrobox', 'container-remove', 'alt'])
        assert args.box_command == 'container-remove'
        assert args.name == 'alt'


class TestOutput:
    """Tests for response rendering."""

    def test_json_output(self, capsys):
        response = error_response("Nothing to do", Outcome.NOTHING_TO_DO, reasons=['x'])
        print_response(response, as_json=True)

        data = json.loads(capsys.readouterr().out)
        assert data == {
            'data': {'message': "Nothing to do", 'reasons': ['x']},
            'error': True,
            'outcome': 'nothing_to_do',
        }

    def test_text_output(self, capsys):
        response = Response("Found 1 record", data={
            'packages': [{'name': 'vim', 'version': '9.0', 'installed': True}],
            'totalCount': 1,
        })
        print_response(response)

        out = capsys.readouterr().out
        assert "Found 1 record" in out
        assert "vim" in out
        assert "Total: 1" in out


class TestMain:

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()
