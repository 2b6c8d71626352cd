"""Git object encoding.

Serializes trees and commits exactly the way git does so that object ids can
be computed in memory. The pruned trees and rewritten commits get their final
ids before anything is written, which keeps the filtering pure and lets the
writer verify that the repository agrees.
"""

import hashlib
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .models import Signature, TreeEntry, MODE_TREE

EMPTY_TREE_ID = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
NULL_ID = "0" * 40


def calc_hash(obj_type: bytes, content: bytes) -> str:
    """Calculate some content's hash in the Git fashion."""
    header = b"%s %d\0" % (obj_type, len(content))
    digest = hashlib.sha1(header)
    digest.update(content)
    return digest.hexdigest()


def encode_name(name: str) -> bytes:
    return name.encode("utf-8", "surrogateescape")


def decode_name(raw: bytes) -> str:
    # surrogateescape keeps non-UTF-8 file names byte-exact on re-encode
    return raw.decode("utf-8", "surrogateescape")


def _entry_sort_key(entry: TreeEntry) -> bytes:
    name = encode_name(entry.name)
    return name + b"/" if entry.filemode == MODE_TREE else name


def encode_tree(entries: Iterable[TreeEntry]) -> bytes:
    """Generate a git tree object body from tree entries."""
    chunks = []
    for entry in sorted(entries, key=_entry_sort_key):
        chunks.append(
            b"%o %s\0%s" % (entry.filemode, encode_name(entry.name), bytes.fromhex(entry.id))
        )
    return b"".join(chunks)


def tree_id(entries: Iterable[TreeEntry]) -> str:
    return calc_hash(b"tree", encode_tree(entries))


def iter_tree(tree_data: bytes) -> Iterator[Tuple[int, bytes, str]]:
    """Yield (mode, name, hex id) for each entry in the git tree_data.

    Raises:
        ValueError: If the data is not a well-formed tree
    """
    ofs = 0
    while ofs < len(tree_data):
        z = tree_data.find(b"\0", ofs)
        mode_end = tree_data.find(b" ", ofs)
        if z <= ofs or mode_end < ofs or mode_end > z or z + 21 > len(tree_data):
            raise ValueError(f"Malformed tree entry at offset {ofs}")
        mode = int(tree_data[ofs:mode_end], 8)
        name = tree_data[mode_end + 1 : z]
        yield mode, name, tree_data[z + 1 : z + 21].hex()
        ofs = z + 21


def format_offset(offset: int) -> bytes:
    sign = b"-" if offset < 0 else b"+"
    hours, minutes = divmod(abs(offset), 60)
    return b"%s%02d%02d" % (sign, hours, minutes)


def encode_signature(signature: Signature) -> bytes:
    return b"%s <%s> %d %s" % (
        signature.name,
        signature.email,
        signature.time,
        format_offset(signature.offset),
    )


def encode_commit(
    tree: str,
    parents: Sequence[str],
    author: Signature,
    committer: Signature,
    message: bytes,
    message_encoding: Optional[str] = None,
) -> bytes:
    """Generate a git commit object body."""
    lines: List[bytes] = [b"tree " + tree.encode("ascii")]
    lines.extend(b"parent " + parent.encode("ascii") for parent in parents)
    lines.append(b"author " + encode_signature(author))
    lines.append(b"committer " + encode_signature(committer))
    if message_encoding:
        lines.append(b"encoding " + message_encoding.encode("ascii"))
    return b"\n".join(lines) + b"\n\n" + message
