#+
# Setuptools script to install DBRoute. Make sure setuptools
# <https://setuptools.pypa.io/en/latest/index.html> is installed.
# Invoke from the command line in this directory as follows:
#
#     python3 setup.py build
#     sudo python3 setup.py install
#
# or install in development mode, with the test dependencies, via
#
#     pip install -e .[test]
#
# Written by the DBRoute contributors.
#-

import sys
import setuptools
from setuptools.command.build_py import \
    build_py as std_build_py

class my_build_py(std_build_py) :
    "customization of build to perform additional validation."

    def run(self) :
        if sys.version_info < (3, 6) :
            sys.stderr.write("This module requires Python 3.6 or later.\n")
            sys.exit(-1)
        #end if
        super().run()
    #end run

#end my_build_py

setuptools.setup \
  (
    name = "DBRoute",
    version = "1.0",
    description = "D-Bus method-call routing and introspecting proxy objects, for Python 3.6 or later",
    long_description = "D-Bus method-call routing and introspecting proxy objects, for Python 3.6 or later",
    author = "DBRoute contributors",
    license = "LGPL v2.1+",
    python_requires = ">=3.6",
    py_modules = ["dbroute", "relay"],
    extras_require =
        {
            "test" : ["pytest"],
        },
    cmdclass =
        {
            "build_py" : my_build_py,
        },
  )
