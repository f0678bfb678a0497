"""Tests for the apt output classifier"""

import pytest

from apm.core.classifier import (
    ErrorCode, benign_packages, classify, find_critical_error, is_benign,
)
from apm.core.errors import ClassifiedPackageError, UnclassifiedError


INSTALL_OUTPUT = """\
Reading package lists... Done
Building dependency tree... Done
Reading state information... Done
The following additional packages will be installed:
  libgpm2 vim-common
  vim-runtime
Suggested packages:
  ctags vim-doc
The following NEW packages will be installed:
  libgpm2 vim vim-common vim-runtime
The following packages will be upgraded:
  xxd
1 upgraded, 4 newly installed, 0 removed and 12 not upgraded.
Inst xxd [2:9.0.1378-1] (2:9.0.1378-2 Debian:12/stable [amd64])
Inst libgpm2 (1.20.7-10+b1 Debian:12/stable [amd64])
Conf xxd (2:9.0.1378-2 Debian:12/stable [amd64])
"""

REMOVE_OUTPUT = """\
Reading package lists... Done
Building dependency tree... Done
The following packages will be REMOVED:
  vim* vim-runtime
0 upgraded, 0 newly installed, 2 removed and 0 not upgraded.
Remv vim [2:9.0.1378-2]
"""

ALT_OUTPUT = """\
Reading Package Lists... Done
Building Dependency Tree... Done
The following NEW packages will be installed:
  htop
0 upgraded, 1 newly installed, 0 reinstalled, 0 removed and 3 not upgraded.
Need to get 110kB of archives.
After unpacking 301kB of additional disk space will be used.
"""


class TestOperationSemantics:
    """Tests for counts and package sections."""

    def test_install_counts(self):
        outcome = classify(INSTALL_OUTPUT)
        assert outcome.upgraded_count == 1
        assert outcome.new_installed_count == 4
        assert outcome.removed_count == 0
        assert outcome.not_upgraded_count == 12
        assert outcome.has_changes()
        assert outcome.errors == []

    def test_install_sections(self):
        outcome = classify(INSTALL_OUTPUT)
        assert outcome.new_installed_packages == ['libgpm2', 'vim', 'vim-common', 'vim-runtime']
        assert outcome.extra_installed == ['libgpm2', 'vim-common', 'vim-runtime']
        assert outcome.upgraded_packages == ['xxd']

    def test_suggested_packages_dropped(self):
        outcome = classify(INSTALL_OUTPUT)
        assert 'ctags' not in outcome.new_installed_packages
        assert 'ctags' not in outcome.extra_installed
        assert outcome.notes == []

    def test_remove_strips_purge_marker(self):
        outcome = classify(REMOVE_OUTPUT)
        assert outcome.removed_packages == ['vim', 'vim-runtime']
        assert outcome.removed_count == 2

    def test_alt_summary_with_reinstalled(self):
        outcome = classify(ALT_OUTPUT)
        assert outcome.new_installed_count == 1
        assert outcome.not_upgraded_count == 3
        assert outcome.new_installed_packages == ['htop']
        assert outcome.notes == []

    def test_lines_iterable(self):
        outcome = classify(REMOVE_OUTPUT.splitlines())
        assert outcome.removed_packages == ['vim', 'vim-runtime']

    def test_empty_output(self):
        outcome = classify("")
        assert not outcome.has_changes()
        assert outcome.errors == []

    def test_to_dict_keys(self):
        data = classify(INSTALL_OUTPUT).to_dict()
        assert data['newInstalledCount'] == 4
        assert data['upgradedPackages'] == ['xxd']
        assert 'extraInstalled' in data
        assert data['errors'] == []
        assert data['notes'] == []

    def test_to_dict_carries_errors_and_notes(self):
        data = classify(
            "vim is already the newest version (2:9.0).\n"
            "Something apt said\n"
            "E: The repository is on fire\n"
            "0 upgraded, 0 newly installed, 0 to remove and 0 not upgraded.\n"
        ).to_dict()

        assert data['errors'][0] == {
            'code': 'AlreadyNewest',
            'params': ['vim'],
            'message': data['errors'][0]['message'],
        }
        assert 'vim' in data['errors'][0]['message']
        assert data['errors'][1]['code'] == 'Unclassified'
        assert data['errors'][1]['line'] == "E: The repository is on fire"
        assert data['notes'] == ["Something apt said"]


class TestRules:
    """Tests for recognized error shapes."""

    @pytest.mark.parametrize('line,code,param', [
        ("vim is already the newest version (2:9.0.1378-2).", ErrorCode.ALREADY_NEWEST, 'vim'),
        ("Package 'nano' is not installed, so not removed", ErrorCode.PACKAGE_NOT_INSTALLED, 'nano'),
        ("E: Unable to locate package nosuchpkg", ErrorCode.UNABLE_TO_LOCATE, 'nosuchpkg'),
        ("E: Couldn't find package nosuchpkg", ErrorCode.COULDNT_FIND_PACKAGE, 'nosuchpkg'),
        ("E: Package 'python' has no installation candidate", ErrorCode.NO_INSTALLATION_CANDIDATE, 'python'),
        ("E: Package mail-transport-agent is a virtual package with no good providers.",
         ErrorCode.VIRTUAL_NO_PROVIDER, 'mail-transport-agent'),
        ("E: You don't have enough free space in /var/cache/apt/archives/.",
         ErrorCode.NOT_ENOUGH_SPACE, '/var/cache/apt/archives/'),
        ("E: Failed to fetch http://deb.example.org/pool/v/vim.deb  404  Not Found",
         ErrorCode.DOWNLOAD_FAILED, 'http://deb.example.org/pool/v/vim.deb'),
    ])
    def test_rule_with_param(self, line, code, param):
        outcome = classify(line)
        assert len(outcome.errors) == 1
        error = outcome.errors[0]
        assert isinstance(error, ClassifiedPackageError)
        assert error.code == code
        assert error.params[0] == param
        assert param in str(error)
        assert error.line == line

    @pytest.mark.parametrize('line,code', [
        ("E: Unmet dependencies. Try 'apt --fix-broken install' with no packages.",
         ErrorCode.UNMET_DEPENDENCIES),
        ("E: Broken packages", ErrorCode.BROKEN_PACKAGES),
        ("E: Unable to acquire the dpkg frontend lock (/var/lib/dpkg/lock-frontend), are you root?",
         ErrorCode.NOT_ROOT),
        ("E: Could not open lock file /var/lib/dpkg/lock-frontend - open (13: Permission denied)",
         ErrorCode.NOT_ROOT),
        ("E: Could not get lock /var/lib/dpkg/lock-frontend. It is held by process 4242 (apt)",
         ErrorCode.LOCK_FAILED),
        ("E: You are trying to remove an essential package", ErrorCode.ESSENTIAL_REMOVAL),
        ("WARNING: You are about to do something potentially harmful.",
         ErrorCode.ESSENTIAL_REMOVAL),
        ("E: Some files failed to download", ErrorCode.DOWNLOAD_FAILED),
        ("E: Sub-process /usr/bin/dpkg returned an error code (1)", ErrorCode.TRANSACTION_ABORTED),
        ("Abort.", ErrorCode.TRANSACTION_ABORTED),
    ])
    def test_rule_code(self, line, code):
        outcome = classify(line)
        assert [e.code for e in outcome.errors] == [code]

    def test_errors_in_encounter_order(self):
        outcome = classify(
            "vim is already the newest version (2:9.0).\n"
            "E: Unable to locate package ghost\n"
        )
        assert [e.code for e in outcome.errors] == [
            ErrorCode.ALREADY_NEWEST, ErrorCode.UNABLE_TO_LOCATE,
        ]

    def test_unknown_error_line(self):
        outcome = classify("E: The repository is on fire")
        assert len(outcome.errors) == 1
        assert isinstance(outcome.errors[0], UnclassifiedError)
        assert outcome.errors[0].line == "E: The repository is on fire"

    def test_unknown_plain_line_is_a_note(self):
        outcome = classify("Something apt never said before")
        assert outcome.errors == []
        assert outcome.notes == ["Something apt never said before"]

    def test_warnings_ignored(self):
        outcome = classify("W: --force-yes is deprecated, use one of the options starting with --allow instead.")
        assert outcome.errors == []
        assert outcome.notes == []

    def test_unmet_dependency_details_are_notes(self):
        outcome = classify(
            "The following packages have unmet dependencies:\n"
            " vim : Depends: vim-runtime (= 2:9.0) but it is not going to be installed\n"
            "E: Unable to correct problems, you have held broken packages.\n"
        )
        assert outcome.notes == [
            "vim : Depends: vim-runtime (= 2:9.0) but it is not going to be installed"
        ]
        assert len(outcome.errors) == 1


class TestCriticalSelection:
    """Tests for benign/critical error handling."""

    def test_benign(self):
        outcome = classify(
            "vim is already the newest version (2:9.0).\n"
            "Package nano is not installed, so not removed\n"
        )
        assert all(is_benign(e) for e in outcome.errors)
        assert find_critical_error(outcome.errors) is None

    def test_first_critical_after_benign(self):
        outcome = classify(
            "vim is already the newest version (2:9.0).\n"
            "E: Unable to locate package ghost\n"
            "E: Broken packages\n"
        )
        critical = find_critical_error(outcome.errors)
        assert critical.code == ErrorCode.UNABLE_TO_LOCATE

    def test_unclassified_is_critical(self):
        outcome = classify("E: Something new\n")
        assert isinstance(find_critical_error(outcome.errors), UnclassifiedError)

    def test_no_errors(self):
        assert find_critical_error([]) is None

    def test_benign_packages(self):
        outcome = classify(
            "vim is already the newest version (2:9.0).\n"
            "'htop' is already the newest version (3.2).\n"
            "vim is already the newest version (2:9.0).\n"
            "Package nano is not installed, so not removed\n"
        )
        assert benign_packages(outcome.errors, ErrorCode.ALREADY_NEWEST) == ['vim', 'htop']
        assert benign_packages(outcome.errors, ErrorCode.PACKAGE_NOT_INSTALLED) == ['nano']
