"""Install the SoftStore moderation core package.

This includes the project lifecycle, asset lifecycle and scan orchestration
components, and their integrations with object storage, the malware scanning
service and the notification dispatcher.
"""

from setuptools import setup, find_packages

setup(
    name='softstore-moderation',
    version='0.1.0',
    package_dir={'': 'core'},
    packages=find_packages(where='core'),
    zip_safe=False,
    python_requires='>=3.8',
    install_requires=[
        'flask',
        'unidecode',
        'python-dateutil',
        'sqlalchemy',
        'flask-sqlalchemy',
        'boto3',
        'botocore',
        'requests',
        'urllib3',
        'retry',
        'pytz',
        'typing_extensions'
    ],
    extras_require={
        'test': [
            'pytest',
            'mimesis'
        ]
    },
    include_package_data=True
)
