from setuptools import setup, find_packages

setup(
    name='seiscompile',
    version='0.1.0',
    description='Compile paired observed/synthetic seismic waveform datasets into binary index/payload files',
    author='Your Name',
    author_email='you@example.com',
    packages=find_packages(include=['seiscompile', 'seiscompile.*']),
    include_package_data=True,
    install_requires=[
        'obspy',
        'pandas',
        'numpy',
        'scipy',
        'tqdm',
        'pyyaml',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'seiscompile=seiscompile.wrappers.run_compile:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Physics',
    ],
    python_requires='>=3.8',
)
