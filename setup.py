from setuptools import setup
from pathlib import Path

this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(name='moscope',
      version='0.1.0',
      description='Static Mach-O/Fat binary analysis library.',
      long_description=long_description,
      long_description_content_type='text/markdown',
      python_requires='>=3.8',
      author='moscope authors',
      install_requires=['Pygments'],
      packages=['libmoscope', 'moscope_macho', 'moscope'],
      package_dir={
            'libmoscope': 'src/libmoscope',
            'moscope_macho': 'src/moscope_macho',
            'moscope': 'src/moscope'
      },
      classifiers=[
            'Programming Language :: Python :: 3',
            'License :: OSI Approved :: MIT License',
            'Operating System :: OS Independent'
      ]
      )
