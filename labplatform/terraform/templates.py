"""Provider-native main.tf templates for raw (module-less) deployments.

Every variable the generator can emit into terraform.tfvars is declared
here, optional ones with ``default = null``.
"""

from labplatform.schemas.spec import PROVIDER_OPENSTACK, PROVIDER_PVE, PROVIDER_VMWARE

_NETWORK_VARIABLES = """
variable "ip_address" {
  description = "Static IPv4/IPv6 address reserved from IPAM"
  type        = string
  default     = null
}

variable "ip_prefix_length" {
  description = "Prefix length of the reserved address"
  type        = number
  default     = null
}

variable "gateway" {
  description = "Default gateway"
  type        = string
  default     = null
}

variable "dns_servers" {
  description = "Comma separated DNS servers"
  type        = string
  default     = null
}

variable "environment" {
  description = "Environment tag"
  type        = string
}
"""

PROXMOX_MAIN_TF = """terraform {
  required_providers {
    proxmox = {
      source  = "telmate/proxmox"
      version = "~> 2.9"
    }
  }
}

provider "proxmox" {
  pm_api_url  = var.proxmox_api_url
  pm_user     = var.proxmox_user
  pm_password = var.proxmox_password
}

resource "proxmox_vm_qemu" "vm" {
  name        = var.vm_name
  target_node = var.target_node
  clone       = var.template_name
  cores       = var.cpu
  memory      = var.memory
  nameserver  = var.dns_servers
  ipconfig0   = var.ip_address == null ? "ip=dhcp" : "ip=${var.ip_address}/${var.ip_prefix_length},gw=${var.gateway}"

  disk {
    size    = "${var.disk}G"
    type    = "scsi"
    storage = var.storage_pool
  }

  network {
    model  = "virtio"
    bridge = var.network_bridge
  }

  tags = var.environment
}

variable "proxmox_api_url" {
  description = "Proxmox API URL"
  type        = string
  default     = null
}

variable "proxmox_user" {
  description = "Proxmox user"
  type        = string
  default     = null
}

variable "proxmox_password" {
  description = "Proxmox password"
  type        = string
  sensitive   = true
  default     = null
}

variable "vm_name" {
  description = "Name of the virtual machine"
  type        = string
}

variable "cpu" {
  description = "CPU cores"
  type        = number
}

variable "memory" {
  description = "Memory in MB"
  type        = number
}

variable "disk" {
  description = "Disk size in GB"
  type        = number
}

variable "network" {
  description = "Network label"
  type        = string
  default     = null
}

variable "os_image" {
  description = "OS image label"
  type        = string
  default     = null
}

variable "target_node" {
  description = "Target Proxmox node"
  type        = string
}

variable "template_name" {
  description = "Template to clone"
  type        = string
}

variable "storage_pool" {
  description = "Storage pool"
  type        = string
  default     = "local-lvm"
}

variable "network_bridge" {
  description = "Network bridge"
  type        = string
  default     = "vmbr0"
}
""" + _NETWORK_VARIABLES + """
output "vm_id" {
  description = "ID of the created VM"
  value       = tostring(proxmox_vm_qemu.vm.vmid)
}

output "vm_ip" {
  description = "IP address of the VM"
  value       = proxmox_vm_qemu.vm.default_ipv4_address
}
"""

VSPHERE_MAIN_TF = """terraform {
  required_providers {
    vsphere = {
      source  = "hashicorp/vsphere"
      version = "~> 2.4"
    }
  }
}

provider "vsphere" {
  user                 = var.vsphere_user
  password             = var.vsphere_password
  vsphere_server       = var.vsphere_server
  allow_unverified_ssl = true
}

data "vsphere_datacenter" "dc" {
  name = var.datacenter
}

data "vsphere_compute_cluster" "cluster" {
  name          = var.cluster
  datacenter_id = data.vsphere_datacenter.dc.id
}

data "vsphere_network" "network" {
  name          = var.network
  datacenter_id = data.vsphere_datacenter.dc.id
}

data "vsphere_datastore" "datastore" {
  name          = var.datastore
  datacenter_id = data.vsphere_datacenter.dc.id
}

data "vsphere_virtual_machine" "template" {
  name          = var.template_name
  datacenter_id = data.vsphere_datacenter.dc.id
}

resource "vsphere_virtual_machine" "vm" {
  name             = var.vm_name
  resource_pool_id = data.vsphere_compute_cluster.cluster.resource_pool_id
  datastore_id     = data.vsphere_datastore.datastore.id
  num_cpus         = var.num_cpus
  memory           = var.memory
  annotation       = "environment=${var.environment}"
  extra_config     = var.ip_address == null ? {} : { "guestinfo.ipaddress" = var.ip_address, "guestinfo.gateway" = coalesce(var.gateway, "") }

  network_interface {
    network_id = data.vsphere_network.network.id
  }

  disk {
    label            = "disk0"
    size             = var.disk_size
    thin_provisioned = true
  }

  clone {
    template_uuid = data.vsphere_virtual_machine.template.id
  }
}

variable "vsphere_user" {
  description = "vSphere user"
  type        = string
  default     = null
}

variable "vsphere_password" {
  description = "vSphere password"
  type        = string
  sensitive   = true
  default     = null
}

variable "vsphere_server" {
  description = "vSphere server"
  type        = string
  default     = null
}

variable "vm_name" {
  description = "Name of the VM"
  type        = string
}

variable "num_cpus" {
  description = "vCPU count"
  type        = number
}

variable "memory" {
  description = "Memory in MB"
  type        = number
}

variable "disk_size" {
  description = "Disk size in GB"
  type        = number
}

variable "network" {
  description = "Port group name"
  type        = string
  default     = "VM Network"
}

variable "os_image" {
  description = "OS image label"
  type        = string
  default     = null
}

variable "datacenter" {
  description = "Datacenter"
  type        = string
}

variable "cluster" {
  description = "Compute cluster"
  type        = string
}

variable "datastore" {
  description = "Datastore name"
  type        = string
}

variable "template_name" {
  description = "Template name"
  type        = string
}
""" + _NETWORK_VARIABLES + """
output "vm_id" {
  description = "ID of the created VM"
  value       = vsphere_virtual_machine.vm.id
}

output "vm_ip" {
  description = "IP address of the VM"
  value       = vsphere_virtual_machine.vm.default_ip_address
}
"""

OPENSTACK_MAIN_TF = """terraform {
  required_providers {
    openstack = {
      source  = "terraform-provider-openstack/openstack"
      version = "~> 1.51"
    }
  }
}

provider "openstack" {
  user_name   = var.openstack_user
  password    = var.openstack_password
  auth_url    = var.openstack_auth_url
  tenant_name = var.tenant_name
  region      = var.region
}

resource "openstack_compute_instance_v2" "vm" {
  name        = var.instance_name
  image_name  = var.image_name
  flavor_name = var.flavor_name
  key_pair    = var.key_pair

  metadata = {
    environment = var.environment
  }

  network {
    name        = var.network_name
    fixed_ip_v4 = var.ip_address
  }
}

variable "openstack_auth_url" {
  description = "OpenStack auth URL"
  type        = string
  default     = null
}

variable "openstack_user" {
  description = "OpenStack username"
  type        = string
  default     = null
}

variable "openstack_password" {
  description = "OpenStack password"
  type        = string
  sensitive   = true
  default     = null
}

variable "instance_name" {
  description = "Name of the instance"
  type        = string
}

variable "vcpus" {
  description = "Requested vCPUs (informational, sizing comes from the flavor)"
  type        = number
  default     = null
}

variable "ram_mb" {
  description = "Requested memory in MB (informational)"
  type        = number
  default     = null
}

variable "disk_gb" {
  description = "Requested disk in GB (informational)"
  type        = number
  default     = null
}

variable "image_name" {
  description = "Image name"
  type        = string
}

variable "network_name" {
  description = "Network name"
  type        = string
}

variable "flavor_name" {
  description = "Flavor name"
  type        = string
}

variable "tenant_name" {
  description = "OpenStack tenant name"
  type        = string
  default     = null
}

variable "region" {
  description = "OpenStack region"
  type        = string
}

variable "key_pair" {
  description = "Key pair name"
  type        = string
  default     = null
}
""" + _NETWORK_VARIABLES + """
output "instance_id" {
  description = "ID of the created instance"
  value       = openstack_compute_instance_v2.vm.id
}

output "instance_ip" {
  description = "IP address of the instance"
  value       = openstack_compute_instance_v2.vm.access_ip_v4
}
"""

MAIN_TF_TEMPLATES = {
    PROVIDER_PVE: PROXMOX_MAIN_TF,
    PROVIDER_VMWARE: VSPHERE_MAIN_TF,
    PROVIDER_OPENSTACK: OPENSTACK_MAIN_TF,
}
