from setuptools import find_packages, setup
import elements_miniscript
import io


with io.open("README.md", encoding="utf-8") as f:
    long_description = f.read()

with io.open("requirements.txt", encoding="utf-8") as f:
    requirements = [r for r in f.read().split('\n') if len(r)]

setup(name="elements_miniscript",
      version=elements_miniscript.__version__,
      description="Elements Output Script Descriptors, Miniscript and covenants",
      long_description=long_description,
      long_description_content_type="text/markdown",
      license="MIT",
      packages=find_packages(exclude=["tests"]),
      keywords=["elements", "liquid", "bitcoin", "miniscript", "script", "descriptor",
                "covenant"],
      install_requires=requirements,
      extras_require={"test": ["pytest"]})
