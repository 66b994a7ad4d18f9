import contextlib
import dataclasses
import json
import logging
import os
import re
import shutil
import sqlite3
import typing
import uuid

logger = logging.getLogger(__name__)

ENGLISH = 'en'
DATA_FILE_EXTENSION = '.txt'
SOURCE_FILE_PATTERN = re.compile(r"^([1-9][0-9]*)\.txt$")

# The North American Numbering Plan shares a single calling code across every
# area code, so its table is split into one shard per 4-digit prefix (the
# calling code plus a 3-digit area code).
NANPA_COUNTRY_CODE = 1
NANPA_BUCKET_LENGTH = 4

# Countries whose table is split on the length of the calling code, except
# where a prefix below says otherwise. When several prefixes match the same
# entry, the one listed last wins.
PREFIXES_TO_EXPAND = {
  86: {'861': 5},
}

DEFAULT_DATA_PATH = os.path.join(
  os.path.dirname(os.path.abspath(__file__)),
  'prefix_data'
)

# Ordered mapping of phone number prefix to geographic description. An empty
# description means "deliberately no description" and is not the same as a
# missing prefix.
PrefixTable = typing.Dict[str, str]


class MissingInputFileError(Exception):
  """An error raised when a prefix table is requested from a path that does not
  exist or cannot be read"""

  path: str # The path of the table that could not be read

  def __init__(self, path: str):
    super().__init__(f"File '{path}' does not exist or is not readable")
    self.path = path


class PartitionMissError(Exception):
  """An error raised when an entry of a prefix table does not start with the
  prefix of any shard planned for its source file. This means the shard plan
  was derived from different data than the table being split."""

  prefix: str # The prefix of the entry that could not be placed
  source: str # The path of the table the entry was read from

  def __init__(self, prefix: str, source: str):
    super().__init__(
      f"Prefix '{prefix}' from '{source}' does not belong to any planned shard")
    self.prefix = prefix
    self.source = source


class UnknownOutputFormatError(Exception):
  """An error raised when compiled data is requested in a format with no
  corresponding shard store"""

  output_format: str

  def __init__(self, output_format: str):
    super().__init__(f"Unknown output format '{output_format}'")
    self.output_format = output_format


@dataclasses.dataclass(frozen=True)
class SourceFile:
  language: str
  country_code: int
  path: str


@dataclasses.dataclass(frozen=True)
class ShardName:
  """Identifies one compiled shard: the language it belongs to and the prefix
  shared by every entry in it."""

  language: str
  prefix: str

  def filename(self, extension: str) -> str:
    return os.path.join(self.language, self.prefix + extension)

  @classmethod
  def from_filename(cls, path: str, extension: str) -> 'ShardName':
    """Recover the language and prefix from a shard path ending in
    `<language>/<prefix><extension>`"""

    (language_dir, basename) = os.path.split(path)
    if not basename.endswith(extension):
      raise ValueError(f"'{path}' is not a shard file ending in '{extension}'")

    return cls(
      os.path.basename(language_dir),
      basename[:len(basename) - len(extension)]
    )


@dataclasses.dataclass
class ShardManifest:
  """The shards written for each language, in the order they were written. The
  runtime consults this to decide which shard holds a given number."""

  shards: typing.Dict[str, typing.List[str]] = dataclasses.field(
    default_factory=dict)

  def add(self, shard: ShardName):
    self.shards.setdefault(shard.language, []).append(shard.prefix)

  def languages(self) -> typing.List[str]:
    return list(self.shards)

  def prefixes(self, language: str) -> typing.List[str]:
    return list(self.shards.get(language, []))


def parse_prefix_lines(lines: typing.Iterable[str]) -> PrefixTable:
  """Build a prefix table from lines of the form `prefix|description`. Blank
  lines, comments and lines without a separator are skipped. When a prefix is
  repeated, the last description read wins."""

  table = {}
  for line in lines:
    line = line.replace('\n', '').replace('\r', '').strip()
    if len(line) == 0 or line.startswith('#'):
      continue

    # Lines with no separator, or with nothing before it, are not mappings
    if line.find('|') < 1:
      continue

    (prefix, description) = line.split('|', 1)
    table[prefix] = description

  return table


def read_prefix_table(path: str) -> PrefixTable:
  try:
    with open(path, 'r', encoding='utf-8') as table_file:
      return parse_prefix_lines(table_file)
  except (OSError, UnicodeDecodeError) as err:
    raise MissingInputFileError(path) from err


def discover_source_files(input_dir: str) -> typing.List[SourceFile]:
  """List the tables in an input tree laid out as `<language>/<code>.txt`.
  Languages and files are returned in sorted order, which determines the order
  in which shards are compiled and listed in the manifest."""

  try:
    languages = sorted(os.listdir(input_dir))
  except OSError as err:
    raise MissingInputFileError(input_dir) from err

  sources = []
  for language in languages:
    language_dir = os.path.join(input_dir, language)
    if language.startswith('.') or not os.path.isdir(language_dir):
      logger.debug('Skipping %s', language_dir)
      continue

    for filename in sorted(os.listdir(language_dir)):
      if filename.startswith('.'):
        continue

      match = SOURCE_FILE_PATTERN.match(filename)
      if match is None:
        logger.warning(
          'Ignoring %s: not named after a country calling code',
          os.path.join(language_dir, filename))
        continue

      sources.append(SourceFile(
        language,
        int(match.group(1)),
        os.path.join(language_dir, filename)
      ))

  return sources


def expand_bucket_prefixes(
  table: PrefixTable,
  country_code: int,
  expansion_rules: typing.Optional[typing.Dict[int, typing.Dict[str, int]]] = None
) -> typing.List[str]:
  """Derive the distinct shard prefixes for a country's table, in the order
  they are first seen. Countries that are not split get a single shard named
  after their calling code."""

  if expansion_rules is None:
    expansion_rules = PREFIXES_TO_EXPAND

  if country_code == NANPA_COUNTRY_CODE:
    def truncate(prefix):
      return prefix[:NANPA_BUCKET_LENGTH]
  elif country_code in expansion_rules:
    rules = expansion_rules[country_code]
    base_length = len(str(country_code))

    def truncate(prefix):
      length = base_length
      for (rule_prefix, rule_length) in rules.items():
        if prefix.startswith(rule_prefix):
          # Later rules overwrite earlier ones, however specific
          length = rule_length
      return prefix[:length]
  else:
    return [str(country_code)]

  buckets = {}
  for prefix in table:
    buckets.setdefault(truncate(prefix), None)

  return list(buckets)


def plan_shards(
  source: SourceFile,
  table: PrefixTable,
  expand_countries: bool,
  expansion_rules: typing.Optional[typing.Dict[int, typing.Dict[str, int]]] = None
) -> typing.List[ShardName]:
  if not expand_countries:
    return [ShardName(source.language, str(source.country_code))]

  return [
    ShardName(source.language, prefix)
    for prefix in expand_bucket_prefixes(table, source.country_code, expansion_rules)
  ]


def has_overlapping_prefix(prefix: str, table: PrefixTable) -> bool:
  """Determine whether any shorter prefix of the one provided has an entry of
  its own in the table."""

  for length in range(len(prefix) - 1, 0, -1):
    if prefix[:length] in table:
      return True

  return False


def compress_against_english(english: PrefixTable, table: PrefixTable):
  """Drop the entries of a translated table that repeat the English description
  for the same prefix, since lookups fall back to English.

  An entry is blanked instead of dropped when a shorter prefix is still in the
  table; otherwise a longest-prefix lookup would stop at the shorter entry and
  return its description rather than falling back to English."""

  for (prefix, description) in list(table.items()):
    if english.get(prefix) != description:
      continue

    if has_overlapping_prefix(prefix, table):
      table[prefix] = ''
    else:
      del table[prefix]


def remove_empty_descriptions(table: PrefixTable):
  for prefix in [prefix for (prefix, description) in table.items() if description == '']:
    del table[prefix]


def split_table(
  table: PrefixTable,
  shards: typing.Sequence[ShardName],
  source: str
) -> typing.Dict[ShardName, PrefixTable]:
  """Route every entry to the first planned shard whose prefix it starts with.
  Every planned shard is present in the result, even if no entry lands in
  it."""

  split = {shard: {} for shard in shards}
  for (prefix, description) in table.items():
    for shard in shards:
      if prefix.startswith(shard.prefix):
        split[shard][prefix] = description
        break
    else:
      raise PartitionMissError(prefix, source)

  return split


class EnglishTableCache:
  """The English tables of one compile run, keyed by country calling code. Each
  English file is read at most once, however many languages refer to it."""

  def __init__(self, input_dir: str):
    self.input_dir = input_dir
    self._tables = {}

  def path_for(self, country_code: int) -> str:
    return os.path.join(
      self.input_dir, ENGLISH, f"{country_code}{DATA_FILE_EXTENSION}")

  def get(self, country_code: int) -> typing.Optional[PrefixTable]:
    """Fetch the English table for a country, or None if there is no English
    file for it. Callers must not modify the table returned."""

    if country_code not in self._tables:
      path = self.path_for(country_code)
      self._tables[country_code] = (
        read_prefix_table(path) if os.path.exists(path) else None)

    return self._tables[country_code]


class JsonShardStore:
  """Compiled data as a directory tree: one JSON object per shard at
  `<language>/<prefix>.json`, plus the manifest in `Map.json`."""

  extension = '.json'
  manifest_filename = 'Map.json'

  def __init__(self, path: str):
    self.path = path

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_value, traceback):
    pass

  def write_shard(self, shard: ShardName, descriptions: PrefixTable):
    shard_path = os.path.join(self.path, shard.filename(self.extension))
    os.makedirs(os.path.dirname(shard_path), exist_ok=True)
    with open(shard_path, 'w', encoding='utf-8') as shard_file:
      json.dump(descriptions, shard_file, ensure_ascii=False, indent='  ')

  def read_shard(self, shard: ShardName) -> PrefixTable:
    shard_path = os.path.join(self.path, shard.filename(self.extension))
    with open(shard_path, 'r', encoding='utf-8') as shard_file:
      return json.load(shard_file)

  def write_manifest(self, manifest: ShardManifest):
    os.makedirs(self.path, exist_ok=True)
    manifest_path = os.path.join(self.path, self.manifest_filename)
    with open(manifest_path, 'w', encoding='utf-8') as manifest_file:
      json.dump(manifest.shards, manifest_file, ensure_ascii=False, indent='  ')

  def read_manifest(self) -> ShardManifest:
    manifest_path = os.path.join(self.path, self.manifest_filename)
    with open(manifest_path, 'r', encoding='utf-8') as manifest_file:
      return ShardManifest(json.load(manifest_file))


class SqliteShardStore:
  """Compiled data in a single SQLite database. Because SQLite uses stateful
  connections, this class is designed to be used as a context manager."""

  def __init__(self, path: str):
    self.path = path

  def __enter__(self):
    self.conn = sqlite3.connect(self.path)
    self.conn.row_factory = sqlite3.Row
    with self.conn:
      self.conn.execute(
        'CREATE TABLE IF NOT EXISTS shards (language, bucket, '
        'PRIMARY KEY(language, bucket))')
      self.conn.execute(
        'CREATE TABLE IF NOT EXISTS descriptions (language, bucket, prefix, '
        'description, PRIMARY KEY(language, bucket, prefix))')
    return self

  def __exit__(self, exc_type, exc_value, traceback):
    self.conn.close()
    del self.conn

  def write_shard(self, shard: ShardName, descriptions: PrefixTable):
    with self.conn:
      self.conn.execute(
        'DELETE FROM descriptions WHERE language = ? AND bucket = ?',
        [shard.language, shard.prefix])
      self.conn.executemany(
        'INSERT INTO descriptions (language, bucket, prefix, description) '
        'VALUES (?, ?, ?, ?)',
        [
          [shard.language, shard.prefix, prefix, description]
          for (prefix, description) in descriptions.items()
        ]
      )

  def read_shard(self, shard: ShardName) -> PrefixTable:
    cursor = self.conn.cursor()
    try:
      cursor.execute(
        'SELECT prefix, description FROM descriptions '
        'WHERE language = ? AND bucket = ? ORDER BY rowid',
        [shard.language, shard.prefix])
      return {row['prefix']: row['description'] for row in cursor.fetchall()}
    finally:
      cursor.close()

  def write_manifest(self, manifest: ShardManifest):
    with self.conn:
      self.conn.execute('DELETE FROM shards')
      for language in manifest.languages():
        self.conn.executemany(
          'INSERT INTO shards (language, bucket) VALUES (?, ?)',
          [[language, prefix] for prefix in manifest.prefixes(language)]
        )

  def read_manifest(self) -> ShardManifest:
    manifest = ShardManifest()
    cursor = self.conn.cursor()
    try:
      cursor.execute('SELECT language, bucket FROM shards ORDER BY rowid')
      for row in cursor.fetchall():
        manifest.add(ShardName(row['language'], row['bucket']))
    finally:
      cursor.close()

    return manifest


OUTPUT_FORMATS = {
  'json': JsonShardStore,
  'sqlite': SqliteShardStore,
}


def open_store(path: str, output_format: str = 'json'):
  """Create the shard store for a format. The store must be entered as a
  context manager before use."""

  if output_format not in OUTPUT_FORMATS:
    raise UnknownOutputFormatError(output_format)

  return OUTPUT_FORMATS[output_format](path)


class PrefixDataCompiler:
  """A single compile run over an input tree. Holds the English tables read so
  far and the manifest of shards written."""

  def __init__(
    self,
    input_dir: str,
    expand_countries: bool = False,
    expansion_rules: typing.Optional[typing.Dict[int, typing.Dict[str, int]]] = None
  ):
    self.input_dir = input_dir
    self.expand_countries = expand_countries
    self.expansion_rules = expansion_rules
    self.english_tables = EnglishTableCache(input_dir)
    self.manifest = ShardManifest()

  def compile_source(self, source: SourceFile, store):
    """Read, compress, split and write a single input table"""

    if source.language == ENGLISH:
      english = self.english_tables.get(source.country_code)
      if english is None:
        raise MissingInputFileError(source.path)
      # Copy the cached table so that the cache keeps the file as read
      table = dict(english)
    else:
      table = read_prefix_table(source.path)

    shards = plan_shards(
      source, table, self.expand_countries, self.expansion_rules)

    if source.language == ENGLISH:
      remove_empty_descriptions(table)
    else:
      english = self.english_tables.get(source.country_code)
      if english is not None:
        compress_against_english(english, table)

    for (shard, descriptions) in split_table(table, shards, source.path).items():
      store.write_shard(shard, descriptions)
      self.manifest.add(shard)
      logger.debug(
        'Wrote %d entries to shard %s/%s',
        len(descriptions), shard.language, shard.prefix)

  def compile(self, store) -> ShardManifest:
    sources = discover_source_files(self.input_dir)
    for (index, source) in enumerate(sources, start=1):
      logger.info('[%d/%d] Compiling %s', index, len(sources), source.path)
      self.compile_source(source, store)

    store.write_manifest(self.manifest)
    return self.manifest


def _remove_path(path: str):
  if os.path.isdir(path):
    shutil.rmtree(path)
  elif os.path.exists(path):
    os.remove(path)


def compile_prefix_data(
  input_dir: str,
  output_path: str,
  expand_countries: bool = False,
  output_format: str = 'json',
  expansion_rules: typing.Optional[typing.Dict[int, typing.Dict[str, int]]] = None
) -> ShardManifest:
  """Compile every table under `input_dir` into `output_path`. Data is written
  to a temporary path beside the output and only moved into place once every
  shard and the manifest have been written; anything already at the output
  path is replaced."""

  store = open_store(f"{output_path}.{uuid.uuid4()}", output_format)
  compiler = PrefixDataCompiler(input_dir, expand_countries, expansion_rules)

  try:
    with store:
      manifest = compiler.compile(store)
  except Exception:
    _remove_path(store.path)
    raise

  _remove_path(output_path)
  os.replace(store.path, output_path)
  return manifest


class PrefixDescriptionLocator:
  """Reads descriptions back out of compiled prefix data. Numbers are looked up
  as the calling code followed by the national number."""

  def __init__(self, store):
    self.store = store
    self.manifest = store.read_manifest()
    self._shards = {}

  def find_shard(self, number: str, language: str) -> typing.Optional[ShardName]:
    """Pick the shard holding a number, using the same first-match rule that
    placed entries in shards at compile time."""

    for prefix in self.manifest.prefixes(language):
      if number.startswith(prefix):
        return ShardName(language, prefix)

    return None

  def lookup(self, number: str, language: str) -> typing.Optional[str]:
    """Find the description of the longest prefix of a number in one language
    only. Returns None if no prefix matches."""

    shard = self.find_shard(number, language)
    if shard is None:
      return None

    if shard not in self._shards:
      self._shards[shard] = self.store.read_shard(shard)
    descriptions = self._shards[shard]

    for length in range(len(number), 0, -1):
      description = descriptions.get(number[:length])
      if description is not None:
        return description

    return None

  def describe(self, number: str, language: str = ENGLISH) -> str:
    """Describe the area a number belongs to, falling back to English when the
    language has nothing (or only an empty description) for it."""

    description = self.lookup(number, language)
    if not description and language != ENGLISH:
      description = self.lookup(number, ENGLISH)

    return description or ''


@contextlib.contextmanager
def prefix_locator(path: str = DEFAULT_DATA_PATH, output_format: str = 'json'):
  """Open compiled prefix data as a managed context"""

  with open_store(path, output_format) as store:
    yield PrefixDescriptionLocator(store)
