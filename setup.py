"""
Provides project-level commands. Commands are run via `python setup.py <command> [args]`

Commands available:

- apidoc: regenerate reST docs for inline pydoc comments
- autobuild: watch for changes to the reST files and rebuild the documentation, refreshing
   the browser.
"""

from setuptools import setup, Command

import os


class RunInRootCommand(Command):
    user_options = []

    def initialize_options(self):
        self.cwd = None

    def finalize_options(self):
        self.cwd = os.getcwd()

    def run(self):
        assert os.getcwd() == self.cwd, 'Must be in package root: %s' % self.cwd
        self.runcmd()

    def runcmd(self):
        pass


class ApiDocCommand(RunInRootCommand):
    description = "regenerates the API docs"

    def runcmd(self):
        os.system('"sphinx-apidoc" -f -e -o docs/apidoc src')


class AutoBuildCommand(RunInRootCommand):
    description = "watches the docs for changes and rebuilds them, automatically refreshing the browser page"

    def runcmd(self):
        os.system("sphinx-autobuild docs docs/_build/html -B")


setup(
    name='scrcpy-connector-py',
    version='0.0.1',
    description='Starts scrcpy-server on a device over adb and connects its video and control sockets.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['scrcpyconn', 'scrcpyconn.adb', 'scrcpyconn.conduit', 'scrcpyconn.config',
              'scrcpyconn.connector', 'scrcpyconn.support'],
    package_data={'scrcpyconn.config': ['*.cfg']},
    python_requires='>=3.6',
    install_requires=[
        'configobj>=5.0.6',
        'requests',
    ],
    extras_require={
        'test': ['PyHamcrest', 'timeout-decorator', 'pytest'],
    },
    zip_safe=False,
    cmdclass={
        'apidoc': ApiDocCommand,
        'autobuild': AutoBuildCommand
    }
)
