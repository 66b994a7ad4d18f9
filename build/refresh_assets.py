# This script will fetch the phone number prefix geocoding tables maintained by
# the libphonenumber project. The tables were freely downloadable by the public
# as of 18 October 2026.

import constants
import os
import tempfile
import urllib.request
import zipfile

# The tables live in the libphonenumber source tree under resources/geocoding,
# one directory per language and one file per country calling code, e.g.
# resources/geocoding/de/49.txt. They can be downloaded in archive form from
# https://github.com/google/libphonenumber/archive/refs/heads/master.zip
print(f"Downloading geocoding tables from {constants.LIBPHONENUMBER_ARCHIVE_URL}")
archive_response = urllib.request.urlopen(constants.LIBPHONENUMBER_ARCHIVE_URL)

tables_written = 0

with tempfile.TemporaryFile() as tmp:
  tmp.write(archive_response.read())
  tmp.seek(0)

  with zipfile.ZipFile(tmp) as archive:
    for member in archive.namelist():
      if not member.startswith(constants.GEOCODING_ARCHIVE_DIR) or member.endswith('/'):
        continue

      relative_path = member[len(constants.GEOCODING_ARCHIVE_DIR):]
      if os.path.isabs(relative_path) or os.pardir in relative_path.split('/'):
        print(f"WARNING: Skipping unexpected archive member {member}")
        continue

      output_path = os.path.join(constants.DEFAULT_INPUT_DIR, *relative_path.split('/'))
      os.makedirs(os.path.dirname(output_path), exist_ok=True)
      with archive.open(member) as table:
        with open(output_path, 'wb') as outfile:
          outfile.write(table.read())
      tables_written += 1

print(f"Wrote {tables_written} tables to {os.path.abspath(constants.DEFAULT_INPUT_DIR)}")
