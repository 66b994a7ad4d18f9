import os

BUILD_DIR = os.path.dirname(os.path.abspath(__file__))

# Where the pipe-delimited geocoding tables are kept, laid out as
# <language>/<country calling code>.txt
DEFAULT_INPUT_DIR = os.path.join(BUILD_DIR, 'geocoding')

# Where compiled shards are written by default. This is the path the prefix2geo
# module reads from when no other path is given.
DEFAULT_OUTPUT_PATH = os.path.join(BUILD_DIR, os.pardir, 'prefix_data')

# The upstream libphonenumber source archive and the directory inside it that
# holds the geocoding tables
LIBPHONENUMBER_ARCHIVE_URL = 'https://github.com/google/libphonenumber/archive/refs/heads/master.zip'
GEOCODING_ARCHIVE_DIR = 'libphonenumber-master/resources/geocoding/'
