import setuptools

setuptools.setup(
  name='prefix2geo',
  version='0.1',
  description='A compiler for phone number prefix geocoding tables and a reader for the sharded data it produces',
  author='Jonathan Eskew',
  author_email='jonathan.r.eskew@census.gov',
  py_modules=['prefix2geo'],
  python_requires='>=3.8',
  zip_safe=False
)
