"""Content archive inspection.

The archive carries its program definition in a ``code.xml`` entry. Only the
program name is of interest for packaging; it is returned raw and in two
escaped forms, one for markup attributes (manifest label) and one for
source-level string literals (generated build constants).
"""

from dataclasses import dataclass
import pathlib
import re
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape as _sax_escape
import zipfile

from standalone_packager.errors import ArchiveFormatError


CODE_XML_ENTRY: str = "code.xml"
PROGRAM_NAME_PATH: str = "header/programName"

# Some exporters write NUL as a character reference, which no XML parser accepts.
_NUL_REFERENCE: str = "&#x0;"

_MARKUP_ENTITIES: dict[str, str] = {'"': "&quot;", "'": "&apos;"}

# Characters that may not appear in an XML 1.0 document, not even as references.
_XML_ILLEGAL_RE: re.Pattern[str] = re.compile(
    "[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]"
)

_SHORT_ESCAPES: dict[int, str] = {
    0x08: "\\b",
    0x09: "\\t",
    0x0A: "\\n",
    0x0C: "\\f",
    0x0D: "\\r",
    0x22: '\\"',
    0x5C: "\\\\",
}


@dataclass(frozen=True, slots=True)
class ProgramName:
    """Program name extracted from the archive.

    :ivar raw: Name as stored in ``code.xml``.
    :ivar markup_escaped: Name safe to embed in XML text or attribute values.
    :ivar source_escaped: Name safe to embed in a double-quoted string literal.
    """

    raw: str
    markup_escaped: str
    source_escaped: str

    @classmethod
    def from_raw(cls, raw: str) -> "ProgramName":
        return cls(
            raw=raw,
            markup_escaped=escape_markup(raw),
            source_escaped=escape_source_string(raw),
        )


def open_archive(path: pathlib.Path) -> zipfile.ZipFile:
    """Open a content archive for reading.

    :param path: Zip file path.
    :returns: Open zip file (caller closes it).
    :raises ArchiveFormatError: If the file is missing or not a zip archive.
    """

    try:
        return zipfile.ZipFile(path, "r")
    except zipfile.BadZipFile as e:
        raise ArchiveFormatError(f"Not a zip archive: {path}") from e
    except OSError as e:
        raise ArchiveFormatError(f"Cannot open archive {path}: {e}") from e


def extract_program_name(archive: zipfile.ZipFile) -> ProgramName:
    """Read the program name from the archive's ``code.xml``.

    :param archive: Open content archive.
    :returns: The program name with its escaped forms.
    :raises ArchiveFormatError: If ``code.xml`` is missing or malformed, or has
        no ``header/programName`` element.
    """

    try:
        raw_bytes: bytes = archive.read(CODE_XML_ENTRY)
    except KeyError as e:
        raise ArchiveFormatError(f"Archive has no {CODE_XML_ENTRY!r} entry.") from e
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveFormatError(f"Cannot read {CODE_XML_ENTRY!r} from archive: {e}") from e

    try:
        text: str = raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ArchiveFormatError(f"{CODE_XML_ENTRY!r} is not valid UTF-8.") from e

    text = text.replace(_NUL_REFERENCE, "")
    # The XML declaration may name an encoding; the text is already decoded.
    text = re.sub(r"^\s*<\?xml[^>]*\?>", "", text, count=1)

    try:
        root: ET.Element = ET.fromstring(text)
    except ET.ParseError as e:
        raise ArchiveFormatError(f"Malformed {CODE_XML_ENTRY!r}: {e}") from e

    node: ET.Element | None = root.find(PROGRAM_NAME_PATH)
    if node is None:
        raise ArchiveFormatError(f"{CODE_XML_ENTRY!r} has no <{PROGRAM_NAME_PATH}> element.")

    return ProgramName.from_raw("".join(node.itertext()))


def escape_markup(text: str) -> str:
    """Escape text for embedding in XML content or attribute values.

    Characters that XML 1.0 forbids outright are dropped.

    :param text: Arbitrary text.
    :returns: Escaped text.
    """

    cleaned: str = _XML_ILLEGAL_RE.sub("", text)
    return _sax_escape(cleaned, _MARKUP_ENTITIES)


def escape_source_string(text: str) -> str:
    """Escape text for a double-quoted Java-style string literal.

    Non-ASCII characters become ``\\uXXXX`` escapes over UTF-16 code units, so
    the result is pure ASCII.

    :param text: Arbitrary text.
    :returns: Escaped text.
    """

    units: bytes = text.encode("utf-16-be", errors="surrogatepass")
    out: list[str] = []
    for i in range(0, len(units), 2):
        code: int = (units[i] << 8) | units[i + 1]
        short: str | None = _SHORT_ESCAPES.get(code)
        if short is not None:
            out.append(short)
        elif code < 0x20 or code > 0x7F:
            out.append(f"\\u{code:04X}")
        else:
            out.append(chr(code))
    return "".join(out)
