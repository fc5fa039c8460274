import stackdeploy

# stackdeploy version
VERSION = stackdeploy.__version__

# default encoding used to convert strings to byte arrays (mainly for template bodies)
DEFAULT_ENCODING = "utf-8"

# strings to indicate truthy/falsy values of environment variables
TRUE_STRINGS = ("1", "true", "True")
FALSE_STRINGS = ("0", "false", "False")

# log levels understood by STACKDEPLOY_LOG
LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "warning")
STACKDEPLOY_LOG_TRACE = "trace"
TRACE_LOG_LEVELS = [STACKDEPLOY_LOG_TRACE]

# maximum size in bytes of a template body that CloudFormation accepts inline
DEFAULT_TEMPLATE_INLINE_SIZE_LIMIT = 51200

# default object key prefix for uploaded templates
DEFAULT_ARTIFACT_PREFIX = "stackdeploy/templates"

# prefix of change sets created by stackdeploy (must match [a-zA-Z][-a-zA-Z0-9]*)
CHANGE_SET_NAME_PREFIX = "stackdeploy"

# capabilities requested for every change set
DEFAULT_CAPABILITIES = ("CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND")

# name of the parent template parameter that carries the addons template URL
ADDONS_TEMPLATE_URL_PARAM_KEY = "AddonsTemplateURL"

# tag keys identifying the stacks of an application
TAG_PREFIX = "stackdeploy"
APPLICATION_TAG_KEY = f"{TAG_PREFIX}-application"
ENVIRONMENT_TAG_KEY = f"{TAG_PREFIX}-environment"
WORKLOAD_TAG_KEY = f"{TAG_PREFIX}-workload"

# concurrent deploy modes for a single stack
CONCURRENT_DEPLOY_WAIT = "wait"
CONCURRENT_DEPLOY_REJECT = "reject"

# default region if none can be determined from the environment
AWS_REGION_US_EAST_1 = "us-east-1"
