"""
Load balancing resources - application load balancers and their listeners.

Listeners never open themselves to the internet: their ingress comes from
the derived security group rules only. Unmatched requests get a fixed 404.
"""

from aws_cdk import aws_elasticloadbalancingv2 as elbv2

from stackcompose.topology.backends import ProvisionResult, ResourceSpec

from .composed_stack import ComposedStack


def provision_load_balancer(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    load_balancer = elbv2.ApplicationLoadBalancer(
        stack,
        spec.name,
        vpc=stack.vpc(params["vpc_name"]),
        internet_facing=params["internet_facing"],
        security_group=stack.security_group(params["security_group"]),
    )
    stack.add_resource(spec.kind, spec.name, load_balancer)

    return ProvisionResult(
        id=load_balancer.load_balancer_arn,
        endpoints={
            "dns_name": load_balancer.load_balancer_dns_name,
            "arn": load_balancer.load_balancer_arn,
        },
    )


def provision_listener(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    load_balancer = stack.resource("load_balancer", params["load_balancer"])
    response = params["default_response"]
    default_action = elbv2.ListenerAction.fixed_response(
        response["status_code"],
        content_type=response["content_type"],
        message_body=response["message_body"],
    )

    if params["protocol"] == "HTTPS":
        listener = load_balancer.add_listener(
            spec.name,
            port=params["port"],
            protocol=elbv2.ApplicationProtocol.HTTPS,
            certificates=[elbv2.ListenerCertificate.from_arn(params["certificate_arn"])],
            default_action=default_action,
            open=False,
        )
    else:
        listener = load_balancer.add_listener(
            spec.name,
            port=params["port"],
            protocol=elbv2.ApplicationProtocol.HTTP,
            default_action=default_action,
            open=False,
        )
    stack.add_resource(spec.kind, spec.name, listener)

    return ProvisionResult(id=listener.listener_arn, endpoints={"arn": listener.listener_arn})
