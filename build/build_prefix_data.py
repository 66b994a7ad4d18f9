# This script compiles the phone number prefix geocoding tables published by the
# libphonenumber project (see refresh_assets.py) into the sharded data read by
# the prefix2geo module.
#
# The input is a directory tree of the form <language>/<country code>.txt, each
# file holding lines of the form prefix|description. English (en) is the
# baseline: translated entries that repeat the English description are dropped
# so that lookups fall back to English instead.
#
# With --expand-countries, the North American Numbering Plan table is split into
# one shard per area code and the Chinese table into smaller shards as well, so
# that a lookup never has to load the whole table for those countries.
#
# Like the other scripts in this directory it is run from build/, but it imports
# the prefix2geo module from the repository root, so install the project first
# (pip install -e ..) or put the repository root on PYTHONPATH.

import argparse
import constants
import logging
import os
import sqlite3
import sys

import prefix2geo

parser = argparse.ArgumentParser(description='''Compiles pipe-delimited phone
  number prefix tables into sharded lookup data plus a manifest of the shards
  available for each language.''')
parser.add_argument('-i', '--input', dest='input_dir',
  default=constants.DEFAULT_INPUT_DIR, type=str, help='''The directory holding
  the tables to compile, laid out as <language>/<country code>.txt.''')
parser.add_argument('-o', '--output', dest='output_path',
  default=constants.DEFAULT_OUTPUT_PATH, type=str, help='''The path to which the
  compiled data will be written. Anything at the path provided will be
  replaced once compilation succeeds.''')
parser.add_argument('--expand-countries', dest='expand_countries',
  action='store_true', help='''Split the tables of large countries into one
  shard per area code.''')
parser.add_argument('--format', dest='output_format', default='json',
  choices=sorted(prefix2geo.OUTPUT_FORMATS), help='''The format in which the
  compiled data is written.''')
parser.add_argument('-v', '--verbose', dest='verbose', action='store_true',
  help='''Report every shard written.''')

args = parser.parse_args()

logging.basicConfig(
  level=logging.DEBUG if args.verbose else logging.INFO,
  format='%(levelname)s %(message)s')

prev_manifest = None

print(f"Attempting to load previous manifest from {os.path.abspath(args.output_path)}")
if os.path.exists(args.output_path):
  try:
    with prefix2geo.open_store(args.output_path, args.output_format) as store:
      prev_manifest = store.read_manifest()
  except (OSError, ValueError, sqlite3.Error) as err:
    logging.debug(err)
if prev_manifest is None:
  print(f"Manifest could not be loaded from {args.output_path}; proceeding without comparison")

print(f"Compiling prefix tables from {os.path.abspath(args.input_dir)}")
try:
  manifest = prefix2geo.compile_prefix_data(
    args.input_dir,
    args.output_path,
    expand_countries=args.expand_countries,
    output_format=args.output_format
  )
except (prefix2geo.MissingInputFileError, prefix2geo.PartitionMissError) as err:
  logging.error(err)
  sys.exit(1)
except (OSError, sqlite3.Error) as err:
  logging.error(f"Could not write compiled data to {args.output_path}: {err}")
  sys.exit(1)

shard_count = sum(len(manifest.prefixes(language)) for language in manifest.languages())
print(f"Wrote {shard_count} shards for {len(manifest.languages())} languages to {os.path.abspath(args.output_path)}")

if prev_manifest is not None:
  languages = prev_manifest.languages() + [
    language for language in manifest.languages()
    if language not in prev_manifest.shards
  ]
  for language in languages:
    prefixes = manifest.prefixes(language)
    prev_prefixes = prev_manifest.prefixes(language)
    if sorted(prefixes) != sorted(prev_prefixes):
      shards_added = [prefix for prefix in prefixes if prefix not in prev_prefixes]
      shards_removed = [prefix for prefix in prev_prefixes if prefix not in prefixes]
      print(f"WARNING: The shards for {language} do not match the last build.")
      if len(shards_added) > 0:
        print(f"         The following shards have been added: {', '.join(shards_added)}")
      if len(shards_removed) > 0:
        print(f"         The following shards have been removed: {', '.join(shards_removed)}")
      print(f"         Lookups for {language} may change for numbers in these shards")
      print("")
