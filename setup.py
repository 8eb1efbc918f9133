# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Sets build parameters for the simple_acme_order module."""
from setuptools import setup


# Open and read our README markdown for the long description value
def read_readme():
    """Opens and reads the main README.md file for this repo."""
    with open('README.md', 'r', encoding='utf-8') as readme_file:
        return readme_file.read()


# Open, read and parse our requirements text to an array for the install_requires value
def read_requirements():
    """Opens and read the requirements.txt file for this repo."""
    with open('requirements.txt', 'r', encoding='utf-8') as requirements_file:
        return list(filter(None, requirements_file.read().split("\n")))


# Set our setup parameters
setup(
    name='simple_acme_order',
    author='Jared Hendrickson',
    author_email='github@jaredhendrickson.com',
    url="https://github.com/jaredhendrickson13/simple_acme_order",
    license="Apache-2.0",
    description="Resumable ACME certificate orders validated with the DNS-01 challenge",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    version="1.0.0",
    packages=[
        "simple_acme_order",
        "simple_acme_order.authorization",
        "simple_acme_order.client",
        "simple_acme_order.config",
        "simple_acme_order.crypto",
        "simple_acme_order.errors",
        "simple_acme_order.models",
        "simple_acme_order.retry",
        "simple_acme_order.store",
        "simple_acme_order.tools",
        "simple_acme_order.tests",
    ],
    install_requires=read_requirements(),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires='>=3.9'
)
