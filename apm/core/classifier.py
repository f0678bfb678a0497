"""
Classifier for apt-get output (simulated or real runs).

Turns the human readable output of ``apt-get -s install|remove`` into a
DryRunOutcome: counts, package lists and the ordered list of errors.

Every line is first tested against RULES, in order. Lines that match no
rule may still carry operation semantics:

    The following NEW packages will be installed:     section header
      foo bar                                         names of the section
    1 upgraded, 2 newly installed, 0 removed and 3 not upgraded.

Informational noise (progress, Inst/Conf/Remv, W: warnings) is dropped.
An unknown ``E:`` line becomes an UnclassifiedError; any other unknown
line is kept verbatim in ``outcome.notes``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Union

from .errors import ClassifiedPackageError, UnclassifiedError
from .models import DryRunOutcome

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Stable codes of the recognized apt complaints."""
    ALREADY_NEWEST = "AlreadyNewest"
    PACKAGE_NOT_INSTALLED = "PackageNotInstalled"
    UNABLE_TO_LOCATE = "UnableToLocate"
    COULDNT_FIND_PACKAGE = "CouldntFindPackage"
    NO_INSTALLATION_CANDIDATE = "NoInstallationCandidate"
    VIRTUAL_NO_PROVIDER = "VirtualNoProvider"
    UNMET_DEPENDENCIES = "UnmetDependencies"
    BROKEN_PACKAGES = "BrokenPackages"
    LOCK_FAILED = "LockFailed"
    NOT_ROOT = "NotRoot"
    ESSENTIAL_REMOVAL = "EssentialRemoval"
    NOT_ENOUGH_SPACE = "NotEnoughSpace"
    DOWNLOAD_FAILED = "DownloadFailed"
    TRANSACTION_ABORTED = "TransactionAborted"


# The requested state already holds: drift, not failure
BENIGN_CODES = frozenset({ErrorCode.ALREADY_NEWEST, ErrorCode.PACKAGE_NOT_INSTALLED})

# Package names may be quoted ('foo') by newer apt
_NAME = r"'?([^\s']+?)'?"


@dataclass(frozen=True)
class Rule:
    """One recognized message shape."""
    pattern: re.Pattern
    code: ErrorCode
    template: str

    def build(self, match: re.Match, line: str) -> ClassifiedPackageError:
        params = [g for g in match.groups() if g]
        return ClassifiedPackageError(self.code, params,
                                      self.template.format(*params), line)


# Order matters: the first matching rule wins
RULES: List[Rule] = [
    Rule(re.compile(rf"^(?:Package )?{_NAME} is already the newest version"),
         ErrorCode.ALREADY_NEWEST,
         "Package {0} is already the newest version"),
    Rule(re.compile(rf"^(?:Package )?{_NAME} is not installed, so not removed"),
         ErrorCode.PACKAGE_NOT_INSTALLED,
         "Package {0} is not installed, so it was not removed"),
    Rule(re.compile(rf"^E: Unable to locate package {_NAME}\s*$"),
         ErrorCode.UNABLE_TO_LOCATE,
         "Unable to locate package {0}"),
    Rule(re.compile(rf"^E: Couldn't find package {_NAME}\s*$"),
         ErrorCode.COULDNT_FIND_PACKAGE,
         "Couldn't find package {0}"),
    Rule(re.compile(rf"^E: Package {_NAME} has no installation candidate"),
         ErrorCode.NO_INSTALLATION_CANDIDATE,
         "Package {0} has no installation candidate"),
    Rule(re.compile(rf"^E: Package {_NAME} is a virtual package with no good providers"),
         ErrorCode.VIRTUAL_NO_PROVIDER,
         "Package {0} is a virtual package with no good providers"),
    Rule(re.compile(r"^E: Unmet dependencies"),
         ErrorCode.UNMET_DEPENDENCIES,
         "Unmet dependencies"),
    Rule(re.compile(r"^E: Broken packages"),
         ErrorCode.BROKEN_PACKAGES,
         "Broken packages"),
    Rule(re.compile(r"^E: .*\bare you root\?"),
         ErrorCode.NOT_ROOT,
         "Root privileges are required"),
    Rule(re.compile(r"^E: Could not open lock file (\S+) - .*Permission denied"),
         ErrorCode.NOT_ROOT,
         "Root privileges are required to lock {0}"),
    Rule(re.compile(r"^E: (?:Could not get lock|Could not open lock file|"
                    r"Unable to lock the \w+ directory)\s*\(?([^\s)]*)"),
         ErrorCode.LOCK_FAILED,
         "Unable to lock the package database"),
    Rule(re.compile(r"^E: (?:You are trying to remove an essential package|"
                    r"Essential packages were removed)"),
         ErrorCode.ESSENTIAL_REMOVAL,
         "Removal of an essential package was refused"),
    Rule(re.compile(r"^WARNING: You are about to do something potentially harmful"),
         ErrorCode.ESSENTIAL_REMOVAL,
         "Removal of an essential package was refused"),
    Rule(re.compile(r"^E: You don't have enough free space in (\S+?)\.?\s*$"),
         ErrorCode.NOT_ENOUGH_SPACE,
         "Not enough free space in {0}"),
    Rule(re.compile(r"^E: Failed to fetch (\S+)"),
         ErrorCode.DOWNLOAD_FAILED,
         "Failed to fetch {0}"),
    Rule(re.compile(r"^E: (?:Some files failed to download|Unable to fetch some archives)"),
         ErrorCode.DOWNLOAD_FAILED,
         "Some files failed to download"),
    Rule(re.compile(r"^(?:Abort\.|E: Trivial Only specified|E: Sub-process .* returned an error code)"),
         ErrorCode.TRANSACTION_ABORTED,
         "The transaction was aborted"),
]

SUMMARY_PATTERN = re.compile(
    r"^(\d+) upgraded, (\d+) newly installed, (?:(\d+) reinstalled, )?"
    r"(\d+) (?:removed|to remove) and (\d+) not upgraded"
)

# Section header -> DryRunOutcome list it fills (None: names are dropped)
SECTION_PATTERNS = [
    (re.compile(r"^The following NEW packages will be installed"), 'new_installed_packages'),
    (re.compile(r"^The following (?:extra|additional) packages will be installed"), 'extra_installed'),
    (re.compile(r"^The following packages will be REMOVED"), 'removed_packages'),
    (re.compile(r"^The following packages will be upgraded"), 'upgraded_packages'),
    (re.compile(r"^The following packages have been kept back"), 'kept_back'),
    (re.compile(r"^The following packages have unmet dependencies"), 'notes'),
    (re.compile(r"^The following .*:\s*$"), None),
    (re.compile(r"^(?:Suggested|Recommended) packages:"), None),
]

IGNORED_PATTERNS = [
    re.compile(r"^(?:Reading|Building|Calculating|Committing|Preparing|Executing)\b"),
    re.compile(r"^(?:Inst|Conf|Remv|Purg|Get:\d+|Hit|Ign|Err)\b"),
    re.compile(r"^(?:Need to get|After unpacking|After this operation|Fetched)\b"),
    re.compile(r"^(?:W|N): "),
    re.compile(r"^Note, selecting "),
    re.compile(r"^(?:Do you want to continue|Done\.?$)"),
    re.compile(r"\[\s*\d+%\]\s*$"),
    re.compile(r"^(?:Selecting previously|Unpacking|Setting up|Processing triggers|Removing)\b"),
    re.compile(r"^\d+(?:/\d+)?: "),
]


class DryRunClassifier:
    """Stateful line classifier; one instance per apt run."""

    def __init__(self):
        self.outcome = DryRunOutcome()
        self._section: Optional[str] = None

    def feed(self, line: str):
        """Classify one line of output."""
        line = line.rstrip('\r\n')
        stripped = line.strip()
        if not stripped:
            return

        indented = line[0].isspace()
        text = stripped if indented else line

        for rule in RULES:
            match = rule.pattern.search(text)
            if match:
                error = rule.build(match, stripped)
                logger.debug(f"Classified: {error!r}")
                self.outcome.errors.append(error)
                return

        if indented:
            self._add_names(stripped)
            return

        # Any non-indented line closes the current section
        self._section = None

        for pattern, section in SECTION_PATTERNS:
            if pattern.search(line):
                self._section = section
                return

        match = SUMMARY_PATTERN.search(line)
        if match:
            upgraded, new, _reinstalled, removed, not_upgraded = match.groups()
            self.outcome.upgraded_count = int(upgraded)
            self.outcome.new_installed_count = int(new)
            self.outcome.removed_count = int(removed)
            self.outcome.not_upgraded_count = int(not_upgraded)
            return

        if any(pattern.search(line) for pattern in IGNORED_PATTERNS):
            return

        if line.startswith('E:'):
            logger.debug(f"Unclassified error: {line}")
            self.outcome.errors.append(UnclassifiedError(line))
        else:
            self.outcome.notes.append(line)

    def _add_names(self, stripped: str):
        if self._section is None:
            return
        if self._section == 'notes':
            self.outcome.notes.append(stripped)
            return
        target = getattr(self.outcome, self._section)
        for name in stripped.split():
            # apt marks packages to purge with a trailing '*'
            name = name.rstrip('*')
            if name and name not in target:
                target.append(name)


def classify(output: Union[str, Iterable[str]]) -> DryRunOutcome:
    """Classify the whole output of one apt run.

    Args:
        output: Raw text, or an iterable of lines

    Returns:
        DryRunOutcome with every error found, in encounter order
    """
    lines = output.splitlines() if isinstance(output, str) else output
    classifier = DryRunClassifier()
    for line in lines:
        classifier.feed(line)
    return classifier.outcome


def is_benign(error: Exception) -> bool:
    return isinstance(error, ClassifiedPackageError) and error.code in BENIGN_CODES


def find_critical_error(errors: Iterable[Exception]) -> Optional[Exception]:
    """First error that is not a benign 'already in the requested state'.

    Unclassified errors count as critical.
    """
    for error in errors:
        if not is_benign(error):
            return error
    return None


def benign_packages(errors: Iterable[Exception], code: ErrorCode) -> List[str]:
    """Package names reported by benign errors of the given code."""
    names = []
    for error in errors:
        if is_benign(error) and error.code == code and error.params:
            if error.params[0] not in names:
                names.append(error.params[0])
    return names
