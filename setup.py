from setuptools import setup, find_packages

setup(
      name='exoflow',
      version='0.1.0',
      license='GPLv3',
      author='gudeqing',
      author_email='822466659@qq.com',
      description='Exome variant workflow: genotyping, recalibration, annotation and evaluation of per-sample g.vcf',
      packages=find_packages(include=['exoflow', 'exoflow.*']),
      long_description=open('README.md', encoding='utf-8').read(),
      long_description_content_type='text/markdown',
      zip_safe=False,
      classifiers=[
            "Development Status :: 1 - Alpha",
            "Programming Language :: Python :: 3",
            "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
            "Intended Audience :: Science/Research",
            "Topic :: Scientific/Engineering :: Bio-Informatics"
        ],
      install_requires=["psutil>=5.6"],
      extras_require={
            "plot": ["pygraphviz"],
            "test": ["pytest>=6", "pytest-mock"],
      },
      entry_points={
            "console_scripts": ["exoseq=exoflow.exoseq:main"],
      },
      setup_requires=[],
      python_requires=">=3.8"
)

# python setup.py sdist bdist_wheel
